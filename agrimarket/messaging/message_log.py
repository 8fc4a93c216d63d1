from typing import List, Optional
import logging

from pymongo.errors import DuplicateKeyError

from ..schemas.message import MessageOut
from ..schemas.thread import ThreadOut
from ..utils import to_id, utcnow
from .errors import EmptyMessage, MessageTooLong, NotAParticipant, TransientStoreError
from .notifier import ChangeNotifier, MESSAGE_APPENDED, THREAD_TOUCHED
from .store import store_call
from .thread_store import ThreadStore

logger = logging.getLogger(__name__)


def _message(doc: dict) -> MessageOut:
    return MessageOut(**to_id(doc))


class MessageLog:
    """Registro append-only de mensajes por thread, ordenado por seq."""

    def __init__(self, db, threads: ThreadStore, notifier: ChangeNotifier, max_length: int = 2000,
                 max_attempts: int = 5):
        self.messages = db.messages
        self.threads = threads
        self.notifier = notifier
        self.max_length = max_length
        self.max_attempts = max_attempts

    async def append(self, thread_id: str, sender_id: str, content: str) -> MessageOut:
        body = (content or "").strip()
        if not body:
            raise EmptyMessage()
        if len(body) > self.max_length:
            raise MessageTooLong(f"El mensaje supera los {self.max_length} caracteres")

        thread = await self.threads.get(thread_id)
        if not thread.has_participant(sender_id):
            raise NotAParticipant()

        sequencer = self.notifier.sequencer
        for attempt in range(1, self.max_attempts + 1):
            # El siguiente seq sale del propio log; el índice único (thread_id, seq)
            # decide entre dos appends que eligieron el mismo
            previous = await self.latest(thread_id)
            now = utcnow()
            doc = {
                "thread_id": thread_id,
                "seq": previous.seq + 1 if previous else 1,
                "sender_id": sender_id,
                "receiver_id": thread.other_participant(sender_id),
                "content": body,
                "created_at": max(now, previous.created_at) if previous else now,
                "is_read": False,
                "read_at": None,
            }
            sequencer.reserve(thread_id, doc["seq"])
            inserted = False
            try:
                res = await store_call(self.messages.insert_one(doc))
                inserted = True
            except DuplicateKeyError:
                logger.info(f"seq {doc['seq']} de {thread_id} ya ocupado (intento {attempt})")
            finally:
                if not inserted:
                    sequencer.discard(thread_id, doc["seq"])
            if inserted:
                break
        else:
            raise TransientStoreError(f"No se pudo añadir el mensaje a {thread_id}, demasiada concurrencia")

        doc["_id"] = res.inserted_id
        message = _message(doc)
        logger.info(f"Mensaje {message.id} (seq {message.seq}) en {thread_id}")

        try:
            await self.threads.touch(thread_id, message.seq, message.created_at)
        except TransientStoreError as e:
            # El mensaje ya está guardado: el inbox también ordena por el último mensaje
            logger.warning(f"No se pudo actualizar la actividad de {thread_id}: {e}")
        finally:
            # Solo después de persistir, y en orden de seq dentro del thread
            sequencer.complete(thread_id, message.seq, lambda: self._announce(thread, message))
        return message

    def _announce(self, thread: ThreadOut, message: MessageOut) -> None:
        self.notifier.publish("thread", thread.id, MESSAGE_APPENDED, thread_id=thread.id, seq=message.seq)
        for user_id in (thread.participant_low, thread.participant_high):
            self.notifier.publish("inbox", user_id, THREAD_TOUCHED, thread_id=thread.id, seq=message.seq)

    async def list_by_thread(self, thread_id: str, since: Optional[int] = None) -> List[MessageOut]:
        """Historial ascendente; con `since` solo los mensajes con seq posterior al cursor."""
        query = {"thread_id": thread_id}
        if since is not None:
            query["seq"] = {"$gt": since}
        cursor = self.messages.find(query).sort("seq", 1)
        docs = await store_call(cursor.to_list(length=None))
        return [_message(doc) for doc in docs]

    async def latest(self, thread_id: str) -> Optional[MessageOut]:
        doc = await store_call(self.messages.find_one({"thread_id": thread_id}, sort=[("seq", -1)]))
        return _message(doc) if doc else None
