from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from ..deps import get_messaging
from ..messaging.service import MessagingService
from ..schemas.contact import ContactOut, UnreadTotal
from ..schemas.user import CurrentUser, Role
from ..security import get_current_user

router = APIRouter()

@router.get("", response_model=List[ContactOut])
async def list_contacts(
    role: Optional[Role] = Query(None, description="Filtra por rol de la contraparte (pestañas del admin)"),
    q: Optional[str] = Query(None, max_length=100, description="Busca por nombre de la contraparte"),
    messaging: MessagingService = Depends(get_messaging),
    current: CurrentUser = Depends(get_current_user),
):
    """Bandeja de entrada: una fila por conversación, la más reciente primero"""
    return await messaging.list_contacts(current, role, q)

@router.get("/unread", response_model=UnreadTotal)
async def unread_total(
    messaging: MessagingService = Depends(get_messaging),
    current: CurrentUser = Depends(get_current_user),
):
    return UnreadTotal(unread=await messaging.unread_total(current))
