"""
Agregador de bandeja de entrada.

Construye la lista de contactos de un usuario a partir de los threads y el
Message Log. No guarda nada: se puede recalcular tantas veces como haga falta.
Los tres buzones (comprador, vendedor y admin con pestañas) usan la misma
función, el admin filtrando por rol de la contraparte.
"""
from typing import List, Optional
import logging

from ..schemas.contact import ContactOut
from ..schemas.user import Role
from .directory import ParticipantDirectory, UNKNOWN_NAME
from .message_log import MessageLog
from .read_state import ReadStateTracker
from .thread_store import ThreadStore

logger = logging.getLogger(__name__)

ELLIPSIS = "…"


def make_preview(content: Optional[str], length: int) -> Optional[str]:
    if content is None:
        return None
    content = " ".join(content.split())
    if len(content) <= length:
        return content
    return content[: max(length - 1, 0)].rstrip() + ELLIPSIS


class InboxAggregator:
    def __init__(
        self,
        threads: ThreadStore,
        log: MessageLog,
        read_state: ReadStateTracker,
        directory: ParticipantDirectory,
        preview_length: int = 80,
    ):
        self.threads = threads
        self.log = log
        self.read_state = read_state
        self.directory = directory
        self.preview_length = preview_length

    async def build_contacts(
        self,
        user_id: str,
        role_filter: Optional[Role] = None,
        query: Optional[str] = None,
    ) -> List[ContactOut]:
        threads = await self.threads.list_for_user(user_id)
        counterpart_ids = [t.other_participant(user_id) for t in threads]
        participants = await self.directory.find_many(counterpart_ids)
        products = await self.directory.product_names(t.product_id for t in threads if t.product_id)
        needle = query.strip().lower() if query and query.strip() else None

        contacts: List[ContactOut] = []
        for thread, counterpart_id in zip(threads, counterpart_ids):
            counterpart = participants.get(counterpart_id)
            if role_filter is not None and (counterpart is None or counterpart.role != role_filter):
                continue
            name = counterpart.display_name if counterpart else UNKNOWN_NAME
            if needle and needle not in name.lower():
                continue

            last = await self.log.latest(thread.id)
            unread = await self.read_state.unread_count(thread.id, user_id)
            contacts.append(ContactOut(
                counterpart_id=counterpart_id,
                counterpart_name=name,
                counterpart_role=counterpart.role if counterpart else None,
                counterpart_blocked=counterpart.is_blocked if counterpart else False,
                thread_id=thread.id,
                product_id=thread.product_id,
                product_name=products.get(thread.product_id) if thread.product_id else None,
                last_message_preview=make_preview(last.content, self.preview_length) if last else None,
                last_message_sender_id=last.sender_id if last else None,
                last_activity_at=last.created_at if last and last.created_at > thread.updated_at else thread.updated_at,
                unread_count=unread,
            ))

        # updated_at del thread ya ordena, pero se reordena por si cambió entre consultas
        contacts.sort(key=lambda c: c.thread_id)
        contacts.sort(key=lambda c: c.last_activity_at, reverse=True)
        return contacts
