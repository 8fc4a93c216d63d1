from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Literal
from motor.motor_asyncio import AsyncIOMotorDatabase
from ..db import get_db
from ..schemas.user import UserOut
from ..security import hash_password, verify_password, create_access_token
from ..utils import to_id, utcnow
from ..middleware.rate_limit import apply_rate_limit
import re
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

# Validadores personalizados
def validate_phone(phone: str) -> str:
    """Valida formato de teléfono (permite +, números, espacios, guiones)"""
    if not phone:
        return phone
    cleaned = re.sub(r'[\s\-]', '', phone)
    if not re.match(r'^\+?\d{9,15}$', cleaned):
        raise ValueError("Formato de teléfono inválido. Use formato internacional (ej: +919876543210)")
    return phone

def validate_password_strength(password: str) -> str:
    """Valida que la contraseña tenga al menos 6 caracteres"""
    if len(password) < 6:
        raise ValueError("La contraseña debe tener al menos 6 caracteres")
    if len(password) > 72:  # Límite de bcrypt
        raise ValueError("La contraseña no puede exceder 72 caracteres")
    if password.isdigit() or password.isalpha():
        logger.warning("Contraseña débil detectada (solo números o solo letras)")
    return password

class Signup(BaseModel):
    name: str = Field(..., min_length=2, max_length=80, description="Nombre completo del usuario")
    email: EmailStr = Field(..., description="Email válido")
    password: str = Field(..., min_length=6, max_length=72, description="Contraseña (mín. 6 caracteres)")
    # Las cuentas de admin no se registran por aquí
    role: Literal["buyer", "seller"] = Field("buyer", description="Comprador o vendedor")
    phone: str | None = Field(None, max_length=20, description="Teléfono de contacto")

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)

    @field_validator('phone')
    @classmethod
    def validate_phone_number(cls, v: str | None) -> str | None:
        if v:
            return validate_phone(v)
        return v

class Login(BaseModel):
    email: EmailStr = Field(..., description="Email del usuario")
    password: str = Field(..., min_length=1, description="Contraseña")

@router.post("/signup", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def signup(request: Request, payload: Signup, db: AsyncIOMotorDatabase = Depends(get_db)):
    # Rate limiting: máximo 5 registros por minuto por IP
    apply_rate_limit(request, "5/minute")

    exists = await db.users.find_one({"email": payload.email})
    if exists:
        raise HTTPException(409, "Email ya registrado")

    doc = payload.model_dump()
    doc["password_hash"] = hash_password(doc.pop("password"))
    doc["is_blocked"] = False
    doc["created_at"] = utcnow().isoformat()

    res = await db.users.insert_one(doc)
    logger.info(f"Usuario registrado {res.inserted_id} ({payload.role})")
    return to_id(await db.users.find_one({"_id": res.inserted_id}))

@router.post("/login")
async def login(request: Request, payload: Login, db: AsyncIOMotorDatabase = Depends(get_db)):
    # Rate limiting: máximo 10 intentos de login por minuto por IP
    apply_rate_limit(request, "10/minute")

    user = await db.users.find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(401, "Credenciales inválidas")
    token = create_access_token(str(user["_id"]))
    return {"access_token": token, "token_type": "bearer"}
