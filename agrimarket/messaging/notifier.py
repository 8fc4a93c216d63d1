"""
Notificador de cambios (pub/sub en proceso).

Cada sesión en vivo se suscribe a un ámbito:
  - ("thread", thread_id): mensajes nuevos y lecturas de ese thread
  - ("inbox", user_id): cualquier thread del usuario fue tocado

Los eventos son solo una señal de "algo cambió, vuelve a consultar": quien los
recibe relee el Message Log / Thread Store. Dentro de un thread los eventos
de mensajes salen en orden de seq (ThreadSequencer). La entrega es best-effort y puede
duplicarse; si la cola de una suscripción se llena se vacía y se entrega un
único evento "resync".
"""
import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, Literal, Optional, Set, Tuple
import logging

from pydantic import BaseModel, Field

from ..utils import utcnow

logger = logging.getLogger(__name__)

Scope = Literal["thread", "inbox"]
SCOPES = ("thread", "inbox")

MESSAGE_APPENDED = "message_appended"
MESSAGES_READ = "messages_read"
THREAD_TOUCHED = "thread_touched"
RESYNC = "resync"


class ChangeEvent(BaseModel):
    type: str
    scope: Scope
    key: str
    thread_id: Optional[str] = None
    seq: Optional[int] = None
    at: datetime = Field(default_factory=utcnow)


class Subscription:
    def __init__(self, scope: Scope, key: str, maxsize: int):
        self.scope = scope
        self.key = key
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def _deliver(self, event: ChangeEvent) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # Consumidor lento: los eventos pendientes ya no importan, solo que relea
            self.dropped += self._queue.qsize()
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(ChangeEvent(type=RESYNC, scope=self.scope, key=self.key))
            logger.warning(f"Cola llena en {self.scope}:{self.key}, se fuerza resync")

    def _wake(self) -> None:
        # None despierta a quien espera en get() tras cerrar la suscripción
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Siguiente evento, o None si vence el timeout o la suscripción se cerró."""
        if self.closed and self._queue.empty():
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeNotifier:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscriptions: Dict[Tuple[str, str], Set[Subscription]] = {}
        self.sequencer = ThreadSequencer()

    def _validate(self, scope: str, key: str) -> None:
        if scope not in SCOPES:
            raise ValueError(f"Ámbito inválido: {scope}")
        if not key:
            raise ValueError("Clave de suscripción vacía")

    def publish(self, scope: Scope, key: str, event_type: str,
                thread_id: Optional[str] = None, seq: Optional[int] = None) -> int:
        """Publica un evento a todas las suscripciones vivas de (scope, key).

        No bloquea: el orden de publicación dentro de un thread es el orden de entrega.
        Devuelve cuántas suscripciones lo recibieron.
        """
        self._validate(scope, key)
        subs = self._subscriptions.get((scope, key))
        if not subs:
            return 0
        event = ChangeEvent(type=event_type, scope=scope, key=key, thread_id=thread_id, seq=seq)
        delivered = 0
        for sub in list(subs):
            try:
                sub._deliver(event)
                delivered += 1
            except Exception as e:
                # Un suscriptor roto no debe impedir la entrega al resto
                logger.error(f"Error entregando evento a {scope}:{key}: {e}", exc_info=True)
        return delivered

    def _add(self, sub: Subscription) -> None:
        self._subscriptions.setdefault((sub.scope, sub.key), set()).add(sub)

    def _remove(self, sub: Subscription) -> None:
        if not sub.closed:
            sub.closed = True
            sub._wake()
        subs = self._subscriptions.get((sub.scope, sub.key))
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscriptions[(sub.scope, sub.key)]

    def open(self, scope: Scope, key: str) -> Subscription:
        """Suscripción manual; quien la abre debe cerrarla con close()."""
        self._validate(scope, key)
        sub = Subscription(scope, key, self.queue_size)
        self._add(sub)
        logger.debug(f"Suscripción abierta {scope}:{key}")
        return sub

    def close(self, sub: Subscription) -> None:
        self._remove(sub)
        logger.debug(f"Suscripción cerrada {sub.scope}:{sub.key}")

    @asynccontextmanager
    async def subscribe(self, scope: Scope, key: str) -> AsyncIterator[Subscription]:
        """Suscripción ligada a la vida de la vista: se libera siempre al salir."""
        sub = self.open(scope, key)
        try:
            yield sub
        finally:
            self.close(sub)

    def subscriber_count(self, scope: Scope, key: str) -> int:
        return len(self._subscriptions.get((scope, key), ()))


class ThreadSequencer:
    """
    Ordena la publicación de los eventos de cada thread por seq.

    Un append reserva su seq antes de insertar. El evento de un seq solo sale
    cuando ninguna reserva menor del mismo thread sigue pendiente.
    """

    def __init__(self):
        self._in_flight: Dict[str, Counter] = {}
        self._ready: Dict[str, Dict[int, Callable[[], None]]] = {}

    def reserve(self, thread_id: str, seq: int) -> None:
        self._in_flight.setdefault(thread_id, Counter())[seq] += 1

    def discard(self, thread_id: str, seq: int) -> None:
        """La reserva no llegó a escribirse (seq ocupado o fallo del almacén)."""
        self._settle(thread_id, seq)
        self._flush(thread_id)

    def complete(self, thread_id: str, seq: int, emit: Callable[[], None]) -> None:
        self._settle(thread_id, seq)
        self._ready.setdefault(thread_id, {})[seq] = emit
        self._flush(thread_id)

    def pending(self, thread_id: str) -> int:
        return sum(self._in_flight.get(thread_id, Counter()).values()) + len(self._ready.get(thread_id, ()))

    def _settle(self, thread_id: str, seq: int) -> None:
        counts = self._in_flight.get(thread_id)
        if not counts:
            return
        counts[seq] -= 1
        if counts[seq] <= 0:
            del counts[seq]
        if not counts:
            del self._in_flight[thread_id]

    def _flush(self, thread_id: str) -> None:
        ready = self._ready.get(thread_id)
        if not ready:
            return
        counts = self._in_flight.get(thread_id)
        floor = min(counts) if counts else None
        for seq in sorted(ready):
            if floor is not None and seq > floor:
                break
            emit = ready.pop(seq)
            try:
                emit()
            except Exception as e:
                logger.error(f"Error publicando seq {seq} de {thread_id}: {e}", exc_info=True)
        if not ready:
            del self._ready[thread_id]
