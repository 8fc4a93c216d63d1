# agrimarket/routers/websocket.py
import asyncio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Dict, Optional, Set, Tuple
import logging

from ..db import get_db
from ..deps import get_notifier
from ..messaging.errors import MessagingError
from ..messaging.notifier import ChangeNotifier
from ..messaging.service import MessagingService
from ..messaging.views import InboxView, ThreadView
from ..schemas.user import CurrentUser, ROLES
from ..security import decode_user_id, load_user

logger = logging.getLogger(__name__)

router = APIRouter()


class LiveSession:
    """Una pestaña/dispositivo conectado. Sus vistas viven lo que vive el socket."""

    def __init__(self, websocket: WebSocket, user: CurrentUser, messaging: MessagingService):
        self.websocket = websocket
        self.user = user
        self.messaging = messaging
        self._send_lock = asyncio.Lock()
        self._views: Dict[Tuple[str, str], Tuple[object, asyncio.Task]] = {}

    async def send(self, payload: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_json(payload)

    async def send_error(self, error: Exception) -> None:
        if isinstance(error, MessagingError):
            await self.send({"type": "error", "code": error.code, "message": error.detail})
        else:
            await self.send({"type": "error", "code": "bad_request", "message": str(error)})

    # --------- suscripciones ----------
    async def subscribe(self, scope: str, key: Optional[str], role: Optional[str] = None) -> None:
        if scope == "inbox":
            key = self.user.id
        if scope not in ("thread", "inbox") or not key:
            raise ValueError("Suscripción inválida")
        if (scope, key) in self._views:
            await self.send({"type": "subscribed", "scope": scope, "id": key})
            return

        if scope == "thread":
            view = await self.messaging.thread_view(self.user, key)
            task = asyncio.create_task(view.run(self._on_thread_change))
        else:
            if role is not None and role not in ROLES:
                raise ValueError(f"Rol inválido: {role}")
            view = self.messaging.inbox_view(self.user, role_filter=role)
            task = asyncio.create_task(view.run(self._on_inbox_change))
        task.add_done_callback(lambda t, k=(scope, key): self._view_finished(k, t))
        self._views[(scope, key)] = (view, task)
        await self.send({"type": "subscribed", "scope": scope, "id": key})

    def _view_finished(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        entry = self._views.get(key)
        if entry and entry[1] is task:
            del self._views[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Vista {key} terminó con error: {task.exception()}")

    async def unsubscribe(self, scope: str, key: Optional[str]) -> None:
        if scope == "inbox":
            key = self.user.id
        entry = self._views.pop((scope, key), None)
        if entry:
            view, task = entry
            view.stop()
            task.cancel()
        await self.send({"type": "unsubscribed", "scope": scope, "id": key})

    async def close(self) -> None:
        """Libera todas las suscripciones sin condiciones."""
        entries = list(self._views.values())
        self._views.clear()
        for view, task in entries:
            view.stop()
            task.cancel()
        # Los errores de cada vista ya se registran en _view_finished
        await asyncio.gather(*(task for _, task in entries), return_exceptions=True)

    async def _on_thread_change(self, view: ThreadView, added) -> None:
        snapshot = not added
        messages = view.messages if snapshot else added
        await self.send({
            "type": "messages",
            "thread_id": view.thread_id,
            "snapshot": snapshot,
            "cursor": view.cursor,
            "messages": [m.model_dump(mode="json") for m in messages],
        })

    async def _on_inbox_change(self, view: InboxView) -> None:
        await self.send({
            "type": "contacts",
            "role": view.role_filter,
            "unread": view.unread_total,
            "contacts": [c.model_dump(mode="json") for c in view.contacts],
        })

    # --------- acciones ----------
    async def handle(self, data) -> None:
        if not isinstance(data, dict):
            raise ValueError("Cada mensaje debe ser un objeto JSON")
        message_type = data.get("type")
        if message_type == "subscribe":
            await self.subscribe(data.get("scope"), data.get("id"), data.get("role"))
        elif message_type == "unsubscribe":
            await self.unsubscribe(data.get("scope"), data.get("id"))
        elif message_type == "send_message":
            message = await self.messaging.send_message(self.user, data.get("thread_id") or "", data.get("content") or "")
            await self.send({"type": "message_sent", "message": message.model_dump(mode="json")})
        elif message_type == "mark_read":
            thread_id = data.get("thread_id") or ""
            updated = await self.messaging.mark_thread_read(self.user, thread_id)
            await self.send({"type": "messages_read", "thread_id": thread_id, "updated": updated})
        elif message_type == "ping":
            await self.send({"type": "pong"})
        else:
            raise ValueError(f"Tipo de mensaje desconocido: {message_type}")


class ConnectionManager:
    """Sesiones abiertas en este proceso (se informan en /health)."""

    def __init__(self):
        self.active_sessions: Set[LiveSession] = set()

    def connect(self, session: LiveSession):
        self.active_sessions.add(session)

    def disconnect(self, session: LiveSession):
        self.active_sessions.discard(session)

    def count(self) -> int:
        return len(self.active_sessions)

manager = ConnectionManager()


async def get_user_from_token(websocket: WebSocket, token: str, db) -> Optional[CurrentUser]:
    """Resuelve el usuario del token JWT o cierra el socket"""
    user_id = decode_user_id(token)
    user = await load_user(db, user_id) if user_id else None
    if user is None:
        await websocket.close(code=1008, reason="Invalid token")
        return None
    return user


@router.websocket("/ws/{token}")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    notifier: ChangeNotifier = Depends(get_notifier),
):
    """
    Endpoint WebSocket para mensajería en tiempo real.
    El token se pasa como parámetro en la URL.
    """
    user = await get_user_from_token(websocket, token, db)
    if not user:
        return

    await websocket.accept()
    messaging = MessagingService(db, notifier)
    session = LiveSession(websocket, user, messaging)
    manager.connect(session)

    try:
        await session.send({
            "type": "connected",
            "message": "Conectado al chat",
            "user_id": user.id,
        })

        while True:
            data = await websocket.receive_json()
            try:
                await session.handle(data)
            except (MessagingError, ValueError) as e:
                await session.send_error(e)

    except WebSocketDisconnect:
        logger.info(f"WebSocket desconectado ({user.id})")
    except Exception as e:
        logger.error(f"Error en WebSocket: {e}", exc_info=True)
    finally:
        await session.close()
        manager.disconnect(session)
