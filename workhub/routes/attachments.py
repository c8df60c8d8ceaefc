import uuid
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse

from ..auth.security import get_current_user
from ..deps import get_attachment_chain
from ..errors import ForbiddenError, NotFoundError, conflict_state
from ..models.models import User
from ..schemas.attachments import AttachmentDownloadOut, AttachmentOut
from ..schemas.work_orders import SuccessOut
from ..services.attachments import AttachmentVersionChain
from ..storage.factory import get_storage
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider


router = APIRouter(tags=["attachments"])


@router.get("/work-orders/{work_order_id}/attachments", response_model=List[AttachmentOut])
def list_attachments(
    work_order_id: uuid.UUID,
    history: bool = False,
    chain: AttachmentVersionChain = Depends(get_attachment_chain),
    user: User = Depends(get_current_user),
):
    return chain.list(work_order_id, include_history=history)


@router.post("/work-orders/{work_order_id}/attachments", response_model=AttachmentOut, status_code=201)
def upload_attachment(
    work_order_id: uuid.UUID,
    file: UploadFile = File(...),
    chain: AttachmentVersionChain = Depends(get_attachment_chain),
    user: User = Depends(get_current_user),
):
    content = file.file.read()
    with conflict_state(AttachmentOut):
        return chain.upload(
            work_order_id,
            content,
            file.filename,
            file.content_type,
            size=len(content),
            actor_id=user.id,
        )


@router.get("/attachments/{attachment_id}/download", response_model=AttachmentDownloadOut)
def download_attachment(
    attachment_id: uuid.UUID,
    chain: AttachmentVersionChain = Depends(get_attachment_chain),
    user: User = Depends(get_current_user),
):
    _, url = chain.open(attachment_id)
    return AttachmentDownloadOut(url=url)


@router.delete("/attachments/{attachment_id}", response_model=SuccessOut)
def delete_attachment(
    attachment_id: uuid.UUID,
    chain: AttachmentVersionChain = Depends(get_attachment_chain),
    user: User = Depends(get_current_user),
):
    chain.delete(attachment_id, actor_id=user.id)
    return SuccessOut()


@router.get("/files/local/{key:path}")
def serve_local_file(key: str, storage: StorageProvider = Depends(get_storage)):
    """Target of download URLs handed out by the local provider."""
    if not isinstance(storage, LocalStorageProvider):
        raise NotFoundError("File not found")
    try:
        path = storage._get_path(key)
    except ValueError:
        raise ForbiddenError("Access denied")
    if not path.is_file():
        raise NotFoundError("File not found")
    return FileResponse(path)
