from datetime import datetime, timedelta
from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext
from motor.motor_asyncio import AsyncIOMotorDatabase

from .config import get_settings
from .db import get_db
from .messaging.directory import participant_from_doc
from .schemas.user import CurrentUser
from .utils import id_lookup

settings = get_settings()
ALGO = "HS256"
pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def hash_password(plain: str) -> str:
    return pwd.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd.verify(plain, hashed)


def create_access_token(user_id: str, expires_hours: Optional[int] = None) -> str:
    expire = datetime.utcnow() + timedelta(hours=expires_hours or settings.jwt_expires_hours)
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)


def decode_user_id(token: str) -> Optional[str]:
    """Devuelve el `sub` del token o None si no es válido."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGO])
    except JWTError:
        return None
    sub = payload.get("sub")
    return str(sub) if sub else None


async def load_user(db, user_id: str) -> Optional[CurrentUser]:
    doc = await db.users.find_one(id_lookup(user_id))
    if not doc:
        return None
    participant = participant_from_doc(doc)
    if participant is None:
        return None
    return CurrentUser(**participant.model_dump(), email=doc.get("email"))


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> str:
    sub = decode_user_id(token)
    if not sub:
        raise HTTPException(status_code=401, detail="Token inválido")
    return sub


async def get_current_user(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> CurrentUser:
    user = await load_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Usuario no encontrado")
    return user


async def require_admin(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if current.role != "admin":
        raise HTTPException(status_code=403, detail="Solo para administradores")
    return current
