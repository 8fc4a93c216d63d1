from fastapi import APIRouter, Depends, Query, Request, status
from typing import List, Optional
import logging

from ..config import get_settings
from ..deps import get_messaging
from ..messaging.service import MessagingService
from ..middleware.rate_limit import apply_rate_limit
from ..schemas.message import MessageCreate, MessageOut, ReadResult
from ..schemas.thread import ThreadOpen, ThreadOut
from ..schemas.user import CurrentUser
from ..security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("", response_model=ThreadOut)
async def open_thread(
    payload: ThreadOpen,
    messaging: MessagingService = Depends(get_messaging),
    current: CurrentUser = Depends(get_current_user),
):
    """Abre (o crea si no existe) la conversación con otro usuario, opcionalmente sobre un producto"""
    return await messaging.open_or_create_thread(current, payload.counterpart_id, payload.product_id)

@router.get("/{thread_id}", response_model=ThreadOut)
async def get_thread(
    thread_id: str,
    messaging: MessagingService = Depends(get_messaging),
    current: CurrentUser = Depends(get_current_user),
):
    return await messaging.get_thread(current, thread_id)

@router.get("/{thread_id}/messages", response_model=List[MessageOut])
async def list_messages(
    thread_id: str,
    since: Optional[int] = Query(None, ge=0, description="Devuelve solo mensajes con seq mayor que este cursor"),
    messaging: MessagingService = Depends(get_messaging),
    current: CurrentUser = Depends(get_current_user),
):
    """Historial del thread en orden de envío (completo o incremental con `since`)"""
    return await messaging.list_messages(current, thread_id, since)

@router.post("/{thread_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
    request: Request,
    thread_id: str,
    payload: MessageCreate,
    messaging: MessagingService = Depends(get_messaging),
    current: CurrentUser = Depends(get_current_user),
):
    """Enviar mensaje (también se puede hacer vía WebSocket). Nunca se reintenta solo."""
    apply_rate_limit(request, get_settings().send_rate_limit)
    return await messaging.send_message(current, thread_id, payload.content)

@router.patch("/{thread_id}/read", response_model=ReadResult)
async def mark_thread_read(
    thread_id: str,
    messaging: MessagingService = Depends(get_messaging),
    current: CurrentUser = Depends(get_current_user),
):
    """Marcar como leídos los mensajes del thread dirigidos al usuario"""
    updated = await messaging.mark_thread_read(current, thread_id)
    return ReadResult(thread_id=thread_id, updated=updated)
