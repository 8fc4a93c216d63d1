from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Literal

Role = Literal["buyer", "seller", "admin"]
ROLES = ("buyer", "seller", "admin")

class Participant(BaseModel):
    """Identidad mínima que la mensajería necesita de un usuario."""
    id: str
    role: Role
    display_name: str = "Usuario desconocido"
    is_blocked: bool = False

class CurrentUser(Participant):
    email: Optional[str] = None

class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: Role
    is_blocked: bool = False
    phone: Optional[str] = None
    created_at: Optional[str] = None

class UserBlockPatch(BaseModel):
    is_blocked: bool = Field(..., description="Bloquear o desbloquear al usuario")
