from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional
import logging

from ..config import Settings, get_settings
from ..schemas.contact import ContactOut
from ..schemas.message import MessageOut
from ..schemas.thread import ThreadOut
from ..schemas.user import CurrentUser, Role
from .directory import ParticipantDirectory
from .errors import NotAParticipant, Unauthenticated, UserBlocked
from .inbox import InboxAggregator
from .message_log import MessageLog
from .notifier import ChangeNotifier, Scope, Subscription
from .read_state import ReadStateTracker
from .resolver import canonical_pair
from .thread_store import ThreadStore
from .views import InboxView, ThreadView

logger = logging.getLogger(__name__)


class MessagingService:
    """
    API de mensajería que consumen los tres buzones (comprador, vendedor, admin).

    Recibe la base de datos y el notificador explícitamente: en tests se
    sustituyen por dobles en memoria.
    """

    def __init__(self, db, notifier: ChangeNotifier, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.notifier = notifier
        self.directory = ParticipantDirectory(db)
        self.threads = ThreadStore(db)
        self.log = MessageLog(db, self.threads, notifier, max_length=self.settings.max_message_length)
        self.read_state = ReadStateTracker(db, self.threads, notifier)
        self.inbox = InboxAggregator(
            self.threads, self.log, self.read_state, self.directory,
            preview_length=self.settings.preview_length,
        )

    # --------- helpers ----------
    @staticmethod
    def _require(user: Optional[CurrentUser]) -> CurrentUser:
        if user is None:
            raise Unauthenticated()
        return user

    async def _thread_for(self, user: CurrentUser, thread_id: str) -> ThreadOut:
        thread = await self.threads.get(thread_id)
        if not thread.has_participant(user.id):
            raise NotAParticipant()
        return thread

    # --------- operaciones ----------
    async def open_or_create_thread(
        self, user: Optional[CurrentUser], counterpart_id: str, product_id: Optional[str] = None
    ) -> ThreadOut:
        user = self._require(user)
        canonical_pair(user.id, counterpart_id)
        counterpart = await self.directory.get(counterpart_id)
        return await self.threads.get_or_create(user, counterpart, product_id)

    async def get_thread(self, user: Optional[CurrentUser], thread_id: str) -> ThreadOut:
        return await self._thread_for(self._require(user), thread_id)

    async def list_messages(
        self, user: Optional[CurrentUser], thread_id: str, since: Optional[int] = None
    ) -> List[MessageOut]:
        user = self._require(user)
        await self._thread_for(user, thread_id)
        return await self.log.list_by_thread(thread_id, since)

    async def send_message(self, user: Optional[CurrentUser], thread_id: str, content: str) -> MessageOut:
        user = self._require(user)
        if user.is_blocked:
            raise UserBlocked("Tu cuenta está bloqueada, no puedes enviar mensajes")
        return await self.log.append(thread_id, user.id, content)

    async def mark_thread_read(self, user: Optional[CurrentUser], thread_id: str) -> int:
        user = self._require(user)
        return await self.read_state.mark_read(thread_id, user.id)

    async def list_contacts(
        self, user: Optional[CurrentUser], role_filter: Optional[Role] = None, query: Optional[str] = None
    ) -> List[ContactOut]:
        user = self._require(user)
        return await self.inbox.build_contacts(user.id, role_filter, query)

    async def unread_total(self, user: Optional[CurrentUser]) -> int:
        user = self._require(user)
        return await self.read_state.unread_total(user.id)

    @asynccontextmanager
    async def subscribe(self, user: Optional[CurrentUser], scope: Scope, key: str) -> AsyncIterator[Subscription]:
        """Suscripción autorizada: threads propios o el inbox propio."""
        user = self._require(user)
        if scope == "thread":
            await self._thread_for(user, key)
        elif key != user.id:
            raise NotAParticipant("Solo puedes suscribirte a tu propia bandeja")
        async with self.notifier.subscribe(scope, key) as sub:
            yield sub

    # --------- vistas en vivo ----------
    async def thread_view(self, user: Optional[CurrentUser], thread_id: str, auto_mark_read: bool = True) -> ThreadView:
        user = self._require(user)
        await self._thread_for(user, thread_id)
        return ThreadView(self, user, thread_id, auto_mark_read=auto_mark_read)

    def inbox_view(self, user: Optional[CurrentUser], role_filter: Optional[Role] = None,
                   query: Optional[str] = None) -> InboxView:
        return InboxView(self, self._require(user), role_filter=role_filter, query=query)
