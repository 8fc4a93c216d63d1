from datetime import datetime
from typing import List, Optional
import logging

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..schemas.thread import ThreadOut
from ..schemas.user import Participant
from ..utils import to_id, utcnow
from .errors import ForbiddenPair, NotFound, UserBlocked
from .resolver import canonical_pair, thread_key
from .store import store_call

logger = logging.getLogger(__name__)

# Quién puede iniciar conversación con quién (rol iniciador -> roles destino)
ALLOWED_INITIATIONS = {
    "buyer": {"seller", "admin"},
    "seller": {"buyer", "admin"},
    "admin": {"buyer", "seller"},
}


def check_pair(initiator: Participant, counterpart: Participant) -> None:
    if counterpart.role not in ALLOWED_INITIATIONS.get(initiator.role, set()):
        raise ForbiddenPair(
            f"Un usuario {initiator.role} no puede iniciar una conversación con un {counterpart.role}"
        )


def _thread(doc: dict) -> ThreadOut:
    return ThreadOut(**to_id(doc))


class ThreadStore:
    def __init__(self, db):
        self.threads = db.threads

    async def get(self, thread_id: str) -> ThreadOut:
        doc = await store_call(self.threads.find_one({"_id": thread_id}))
        if not doc:
            raise NotFound(f"Conversación no encontrada: {thread_id}")
        return _thread(doc)

    async def get_or_create(
        self,
        initiator: Participant,
        counterpart: Participant,
        product_id: Optional[str] = None,
    ) -> ThreadOut:
        """
        Busca el thread del par (+ producto) y si no existe lo crea.

        Es seguro con llamadas concurrentes: la unicidad la garantiza el índice
        y un DuplicateKeyError significa que otro lo creó primero, así que se relee.
        """
        key = thread_key(initiator.id, counterpart.id, product_id)
        doc = await store_call(self.threads.find_one({"_id": key}))
        if doc:
            return _thread(doc)

        check_pair(initiator, counterpart)
        for participant in (initiator, counterpart):
            if participant.is_blocked:
                raise UserBlocked(f"El usuario {participant.id} está bloqueado")

        low, high = canonical_pair(initiator.id, counterpart.id)
        now = utcnow()
        doc = {
            "_id": key,
            "participant_low": low,
            "participant_high": high,
            "product_id": product_id,
            "created_at": now,
            "updated_at": now,
            "last_seq": 0,
        }
        try:
            await store_call(self.threads.insert_one(doc))
            logger.info(f"Conversación creada {key}")
        except DuplicateKeyError:
            logger.info(f"Conversación {key} creada en paralelo, se relee")
            doc = await store_call(self.threads.find_one({"_id": key}))
            if not doc:
                raise NotFound(f"Conversación no encontrada: {key}")
        return _thread(doc)

    async def touch(self, thread_id: str, seq: Optional[int] = None, at: Optional[datetime] = None) -> ThreadOut:
        """
        Marca actividad en el thread: updated_at y last_seq solo avanzan ($max),
        así que dos appends que terminan desordenados no lo hacen retroceder.
        """
        update = {"updated_at": at or utcnow()}
        if seq is not None:
            update["last_seq"] = seq
        doc = await store_call(self.threads.find_one_and_update(
            {"_id": thread_id},
            {"$max": update},
            return_document=ReturnDocument.AFTER,
        ))
        if not doc:
            raise NotFound(f"Conversación no encontrada: {thread_id}")
        return _thread(doc)

    async def list_for_user(self, user_id: str) -> List[ThreadOut]:
        """Todos los threads del usuario, sin importar su rol, más recientes primero."""
        cursor = self.threads.find({
            "$or": [
                {"participant_low": user_id},
                {"participant_high": user_id},
            ]
        }).sort([("updated_at", -1), ("_id", 1)])
        docs = await store_call(cursor.to_list(length=None))
        return [_thread(doc) for doc in docs]
