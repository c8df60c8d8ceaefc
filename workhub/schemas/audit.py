import uuid
from datetime import date, datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class FieldChange(BaseModel):
    field: str
    from_: Any = Field(default=None, alias="from")
    to: Any = None

    class Config:
        populate_by_name = True


class AuditChanges(BaseModel):
    """Tagged change-set: a field diff, a free-text note, or event metadata."""
    kind: Literal["diff", "note", "event"]
    changes: List[FieldChange] = Field(default_factory=list)
    text: Optional[str] = None
    data: Optional[dict] = None


class AuditActor(BaseModel):
    id: uuid.UUID
    username: str
    display_name: str


class AuditEntryOut(BaseModel):
    id: int
    work_order_id: uuid.UUID
    action: str
    actor: Optional[AuditActor] = None
    changes: Optional[AuditChanges] = None
    board_card_ids: List[str] = Field(default_factory=list)
    created_at: datetime


class AuditNoteIn(BaseModel):
    text: str
    note_date: Optional[date] = Field(default=None, alias="date")  # backdated note, day granularity

    class Config:
        populate_by_name = True

    @field_validator("text")
    @classmethod
    def _text_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("note text required")
        return v
