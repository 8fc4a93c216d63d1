"""
Vistas en vivo de un thread y de una bandeja.

Política única de reconciliación: un evento del notificador o, si no llega
ninguno, un intervalo largo de sondeo, terminan ambos en el mismo reload()
idempotente. Los datos siempre se releen del almacén; los eventos solo avisan.
"""
import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional
import logging

from ..schemas.contact import ContactOut
from ..schemas.message import MessageOut
from ..schemas.user import CurrentUser, Role
from .errors import TransientStoreError
from .notifier import MESSAGES_READ, RESYNC, ChangeEvent
from .store import retry_read

if TYPE_CHECKING:
    from .service import MessagingService

logger = logging.getLogger(__name__)


class ThreadView:
    def __init__(
        self,
        service: "MessagingService",
        user: CurrentUser,
        thread_id: str,
        auto_mark_read: bool = True,
        poll_seconds: Optional[float] = None,
    ):
        self.service = service
        self.user = user
        self.thread_id = thread_id
        self.auto_mark_read = auto_mark_read
        self.poll_seconds = poll_seconds or service.settings.thread_poll_seconds
        self.cursor = 0  # último seq contiguo visto
        self.error: Optional[Exception] = None
        self._by_id: Dict[str, MessageOut] = {}
        self._stopped = asyncio.Event()

    @property
    def messages(self) -> List[MessageOut]:
        return sorted(self._by_id.values(), key=lambda m: m.seq)

    def _advance_cursor(self) -> None:
        # Solo avanza sobre seqs consecutivos: si un mensaje con seq menor aún no
        # es visible, se volverá a pedir en la próxima recarga.
        seqs = {m.seq for m in self._by_id.values()}
        while self.cursor + 1 in seqs:
            self.cursor += 1

    def merge(self, fetched: List[MessageOut]) -> List[MessageOut]:
        """Incorpora mensajes deduplicando por id. Devuelve los que no se conocían."""
        added = []
        for message in fetched:
            if message.id not in self._by_id:
                added.append(message)
            self._by_id[message.id] = message
        self._advance_cursor()
        return added

    async def reload(self, full: bool = False) -> List[MessageOut]:
        since = None if full else self.cursor
        settings = self.service.settings
        fetched = await retry_read(
            lambda: self.service.list_messages(self.user, self.thread_id, since),
            attempts=settings.read_retry_attempts,
            backoff=settings.read_retry_backoff,
        )
        added = self.merge(fetched)
        if self.auto_mark_read:
            await self._mark_read()
        return [self._by_id[m.id] for m in added]

    async def _mark_read(self) -> None:
        pending = [m for m in self._by_id.values() if m.receiver_id == self.user.id and not m.is_read]
        if not pending:
            return
        try:
            await self.service.mark_thread_read(self.user, self.thread_id)
        except TransientStoreError as e:
            # Los mensajes ya están en la vista; la próxima recarga vuelve a marcarlos
            logger.warning(f"No se pudieron marcar como leídos en {self.thread_id}: {e}")
            return
        for m in pending:
            self._by_id[m.id] = m.model_copy(update={"is_read": True})

    def stop(self) -> None:
        self._stopped.set()

    async def run(self, on_change: Optional[Callable[["ThreadView", List[MessageOut]], Awaitable[None]]] = None) -> None:
        """Mantiene la vista al día hasta stop() o cancelación."""
        async with self.service.subscribe(self.user, "thread", self.thread_id) as sub:
            await self._step(full=True, on_change=on_change, initial=True)
            while not self._stopped.is_set() and not sub.closed:
                event = await _next_event(sub, self.poll_seconds, self._stopped)
                if self._stopped.is_set():
                    break
                full = event is None or event.type in (MESSAGES_READ, RESYNC)
                await self._step(full=full, on_change=on_change)

    async def _step(self, full: bool, on_change, initial: bool = False) -> None:
        try:
            added = await self.reload(full=full)
            self.error = None
        except TransientStoreError as e:
            # Se degrada al sondeo: el siguiente ciclo lo vuelve a intentar
            self.error = e
            logger.warning(f"No se pudo refrescar el thread {self.thread_id}: {e}")
            return
        if on_change and (added or full or initial):
            await on_change(self, added)


class InboxView:
    def __init__(
        self,
        service: "MessagingService",
        user: CurrentUser,
        role_filter: Optional[Role] = None,
        query: Optional[str] = None,
        poll_seconds: Optional[float] = None,
    ):
        self.service = service
        self.user = user
        self.role_filter = role_filter
        self.query = query
        self.poll_seconds = poll_seconds or service.settings.inbox_poll_seconds
        self.contacts: List[ContactOut] = []
        self.error: Optional[Exception] = None
        self._stopped = asyncio.Event()

    @property
    def unread_total(self) -> int:
        return sum(c.unread_count for c in self.contacts)

    async def reload(self) -> bool:
        """Recalcula la bandeja. Devuelve True si algo cambió."""
        settings = self.service.settings
        contacts = await retry_read(
            lambda: self.service.list_contacts(self.user, self.role_filter, self.query),
            attempts=settings.read_retry_attempts,
            backoff=settings.read_retry_backoff,
        )
        changed = contacts != self.contacts
        self.contacts = contacts
        return changed

    def stop(self) -> None:
        self._stopped.set()

    async def run(self, on_change: Optional[Callable[["InboxView"], Awaitable[None]]] = None) -> None:
        async with self.service.subscribe(self.user, "inbox", self.user.id) as sub:
            await self._step(on_change, force=True)
            while not self._stopped.is_set() and not sub.closed:
                await _next_event(sub, self.poll_seconds, self._stopped)
                if self._stopped.is_set():
                    break
                await self._step(on_change)

    async def _step(self, on_change, force: bool = False) -> None:
        try:
            changed = await self.reload()
            self.error = None
        except TransientStoreError as e:
            self.error = e
            logger.warning(f"No se pudo refrescar la bandeja de {self.user.id}: {e}")
            return
        if on_change and (changed or force):
            await on_change(self)


async def _next_event(sub, timeout: float, stopped: asyncio.Event) -> Optional[ChangeEvent]:
    """Espera un evento, el fin del intervalo de sondeo o stop(), lo que ocurra antes."""
    get_task = asyncio.ensure_future(sub.get(timeout))
    stop_task = asyncio.ensure_future(stopped.wait())
    try:
        done, _ = await asyncio.wait({get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if get_task in done:
            return get_task.result()
        return None
    finally:
        for task in (get_task, stop_task):
            if not task.done():
                task.cancel()
