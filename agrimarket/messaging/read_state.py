import logging

from ..utils import utcnow
from .errors import NotAParticipant
from .notifier import ChangeNotifier, MESSAGES_READ, THREAD_TOUCHED
from .store import store_call
from .thread_store import ThreadStore

logger = logging.getLogger(__name__)


class ReadStateTracker:
    def __init__(self, db, threads: ThreadStore, notifier: ChangeNotifier):
        self.messages = db.messages
        self.threads = threads
        self.notifier = notifier

    async def mark_read(self, thread_id: str, receiver_id: str) -> int:
        """
        Marca como leídos los mensajes del thread dirigidos a receiver_id.
        Idempotente: si no queda nada por leer devuelve 0 y no publica nada.
        """
        thread = await self.threads.get(thread_id)
        if not thread.has_participant(receiver_id):
            raise NotAParticipant()

        result = await store_call(self.messages.update_many(
            {"thread_id": thread_id, "receiver_id": receiver_id, "is_read": False},
            {"$set": {"is_read": True, "read_at": utcnow()}},
        ))
        updated = result.modified_count
        if updated:
            logger.info(f"{updated} mensajes leídos en {thread_id} por {receiver_id}")
            self.notifier.publish("thread", thread_id, MESSAGES_READ, thread_id=thread_id)
            # Las otras sesiones del mismo usuario deben refrescar sus contadores
            self.notifier.publish("inbox", receiver_id, THREAD_TOUCHED, thread_id=thread_id)
        return updated

    async def unread_count(self, thread_id: str, user_id: str) -> int:
        return await store_call(self.messages.count_documents(
            {"thread_id": thread_id, "receiver_id": user_id, "is_read": False}
        ))

    async def unread_total(self, user_id: str) -> int:
        return await store_call(self.messages.count_documents(
            {"receiver_id": user_id, "is_read": False}
        ))
