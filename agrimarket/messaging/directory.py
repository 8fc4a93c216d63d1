from typing import Dict, Iterable, Optional
import logging

from ..schemas.user import Participant, ROLES
from ..utils import id_lookup
from .errors import NotFound
from .store import store_call

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Usuario desconocido"


def participant_from_doc(doc: dict) -> Optional[Participant]:
    """Convierte un documento de `users` en Participant (None si el rol no es válido)."""
    role = doc.get("role")
    if role not in ROLES:
        logger.warning(f"Usuario {doc.get('_id')} con rol inválido: {role!r}")
        return None
    return Participant(
        id=str(doc["_id"]),
        role=role,
        display_name=doc.get("name") or UNKNOWN_NAME,
        is_blocked=bool(doc.get("is_blocked", False)),
    )


class ParticipantDirectory:
    """Consulta de identidad/rol de usuarios (colaborador externo, solo lectura)."""

    def __init__(self, db):
        self.users = db.users
        self.products = db.products

    async def find(self, user_id: str) -> Optional[Participant]:
        doc = await store_call(self.users.find_one(id_lookup(user_id)))
        if not doc:
            return None
        return participant_from_doc(doc)

    async def get(self, user_id: str) -> Participant:
        participant = await self.find(user_id)
        if participant is None:
            raise NotFound(f"Usuario no encontrado: {user_id}")
        return participant

    async def find_many(self, user_ids: Iterable[str]) -> Dict[str, Participant]:
        found: Dict[str, Participant] = {}
        for user_id in set(user_ids):
            participant = await self.find(user_id)
            if participant is not None:
                found[user_id] = participant
        return found

    async def product_names(self, product_ids: Iterable[str]) -> Dict[str, str]:
        """Nombres de producto del catálogo; los que no existen se omiten."""
        names: Dict[str, str] = {}
        for product_id in set(p for p in product_ids if p):
            doc = await store_call(self.products.find_one(id_lookup(product_id)))
            if doc and doc.get("name"):
                names[product_id] = doc["name"]
        return names
