from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

class MessageCreate(BaseModel):
    content: str = Field(..., description="Texto del mensaje; no puede quedar vacío tras recortar espacios")

class MessageOut(BaseModel):
    id: str
    thread_id: str
    seq: int
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    is_read: bool = False
    read_at: Optional[datetime] = None

class ReadResult(BaseModel):
    thread_id: str
    updated: int
