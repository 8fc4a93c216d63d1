# agrimarket/routers/users.py
import re
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional, List
from motor.motor_asyncio import AsyncIOMotorDatabase
import logging

from ..db import get_db
from ..deps import get_notifier
from ..messaging.notifier import ChangeNotifier, THREAD_TOUCHED
from ..security import get_current_user, require_admin
from ..utils import to_id, to_object_id
from ..schemas.user import CurrentUser, Role, UserOut, UserBlockPatch

logger = logging.getLogger(__name__)

router = APIRouter()

def _normalize_user(doc: dict) -> dict:
    out = to_id(doc)
    out.pop("password_hash", None)
    out["is_blocked"] = bool(out.get("is_blocked", False))
    return out

@router.get("/me", response_model=UserOut)
async def me(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    doc = await db.users.find_one({"_id": to_object_id(current.id, "user_id")})
    if not doc:
        raise HTTPException(404, "Usuario no encontrado")
    return _normalize_user(doc)

@router.get("", response_model=List[UserOut])
async def list_users(
    role: Optional[Role] = Query(None),
    q: Optional[str] = Query(None, max_length=100, description="Busca por nombre"),
    db: AsyncIOMotorDatabase = Depends(get_db),
    _admin: CurrentUser = Depends(require_admin),
):
    """Listado para que el admin elija con quién conversar (pestañas compradores/vendedores)"""
    query: dict = {}
    if role:
        query["role"] = role
    if q and q.strip():
        query["name"] = {"$regex": re.escape(q.strip()), "$options": "i"}
    items = []
    async for doc in db.users.find(query).sort("name", 1):
        items.append(_normalize_user(doc))
    return items

@router.patch("/{user_id}/block", response_model=UserOut)
async def set_blocked(
    user_id: str,
    payload: UserBlockPatch,
    db: AsyncIOMotorDatabase = Depends(get_db),
    notifier: ChangeNotifier = Depends(get_notifier),
    admin: CurrentUser = Depends(require_admin),
):
    """Bloquear/desbloquear: un usuario bloqueado no puede abrir conversaciones ni enviar"""
    oid = to_object_id(user_id, "user_id")
    if user_id == admin.id:
        raise HTTPException(400, "No puedes bloquearte a ti mismo")
    res = await db.users.update_one({"_id": oid}, {"$set": {"is_blocked": payload.is_blocked}})
    if res.matched_count == 0:
        raise HTTPException(404, "Usuario no encontrado")
    logger.info(f"Usuario {user_id} bloqueado={payload.is_blocked} por {admin.id}")

    # Las bandejas que lo muestran deben refrescar la marca de bloqueo
    async for thread in db.threads.find({"$or": [{"participant_low": user_id}, {"participant_high": user_id}]}):
        other = thread["participant_high"] if thread["participant_low"] == user_id else thread["participant_low"]
        notifier.publish("inbox", other, THREAD_TOUCHED, thread_id=thread["_id"])

    return _normalize_user(await db.users.find_one({"_id": oid}))
