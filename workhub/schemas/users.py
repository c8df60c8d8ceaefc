import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class UserOut(BaseModel):
    id: uuid.UUID
    username: str
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    is_active: bool
    row_version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserUpdate(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    # Admin-only fields; None leaves them unchanged
    role: Optional[str] = None
    is_active: Optional[bool] = None
    row_version: int

    @field_validator("email", "phone", "first_name", "last_name", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("role")
    @classmethod
    def _known_role(cls, v):
        if v is not None and v not in ("admin", "user"):
            raise ValueError("role must be 'admin' or 'user'")
        return v
