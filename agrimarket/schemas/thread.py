from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional

class ThreadOpen(BaseModel):
    counterpart_id: str = Field(..., min_length=1, description="Usuario con quien conversar")
    product_id: Optional[str] = Field(None, description="Producto sobre el que se conversa (opcional)")

    @field_validator("product_id")
    @classmethod
    def blank_product_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

class ThreadOut(BaseModel):
    id: str
    participant_low: str
    participant_high: str
    product_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_seq: int = 0

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_low, self.participant_high)

    def other_participant(self, user_id: str) -> str:
        return self.participant_high if user_id == self.participant_low else self.participant_low
