import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AttachmentOut(BaseModel):
    id: uuid.UUID
    work_order_id: uuid.UUID
    original_name: str
    stored_name: str
    mime_type: Optional[str] = None
    size_bytes: int
    version: int
    is_latest: bool
    previous_id: Optional[uuid.UUID] = None
    uploaded_by: Optional[uuid.UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AttachmentDownloadOut(BaseModel):
    url: str
