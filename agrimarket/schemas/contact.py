from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from .user import Role

class ContactOut(BaseModel):
    """Resumen de un thread desde el punto de vista de quien lo mira. No se persiste."""
    counterpart_id: str
    counterpart_name: str
    counterpart_role: Optional[Role] = None
    counterpart_blocked: bool = False
    thread_id: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    last_message_preview: Optional[str] = None
    last_message_sender_id: Optional[str] = None
    last_activity_at: datetime
    unread_count: int = 0

class UnreadTotal(BaseModel):
    unread: int
