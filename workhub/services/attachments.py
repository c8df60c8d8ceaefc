"""
Attachment version chain.

Each (work order, original name) pair owns a chain of versions linked through
``previous_id``; exactly one row of a non-empty chain carries ``is_latest``.
Every mutation runs in one transaction together with its audit entry.
"""
import os
import uuid
from typing import List, Optional, Tuple

import structlog
from slugify import slugify
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import AttachmentVersion, AuditAction, WorkOrder
from ..storage.provider import StorageProvider
from .audit import AuditTrail
from .clock import Clock


logger = structlog.get_logger(__name__)


def clean_original_name(original_name: Optional[str]) -> str:
    # Browsers on Windows may send the full client path
    name = (original_name or "").replace("\\", "/").split("/")[-1].strip()
    if not name:
        raise ValidationError("File name required")
    return name


def attachment_key(work_order_id: uuid.UUID, original_name: str, clock: Clock) -> Tuple[str, str]:
    """Generated stored name and byte-store key for a new version."""
    base, ext = os.path.splitext(original_name)
    safe_name = slugify(base) or "file"
    safe_ext = slugify(ext.lstrip("."))
    stamp = clock.now().strftime("%Y%m%d%H%M%S")
    stored_name = f"{stamp}_{uuid.uuid4().hex[:8]}_{safe_name}{'.' + safe_ext if safe_ext else ''}"
    return stored_name, f"/work-orders/{work_order_id}/{stored_name}"


class AttachmentVersionChain:
    def __init__(self, db: Session, storage: StorageProvider, audit: AuditTrail, clock: Clock):
        self.db = db
        self.storage = storage
        self.audit = audit
        self.clock = clock

    def _latest(self, work_order_id: uuid.UUID, original_name: str) -> Optional[AttachmentVersion]:
        return self.db.execute(
            select(AttachmentVersion).where(
                AttachmentVersion.work_order_id == work_order_id,
                AttachmentVersion.original_name == original_name,
                AttachmentVersion.is_latest.is_(True),
            )
        ).scalars().first()

    def _require_work_order(self, work_order_id: uuid.UUID) -> WorkOrder:
        wo = self.db.get(WorkOrder, work_order_id)
        if wo is None:
            raise NotFoundError("Work order not found")
        return wo

    def list(self, work_order_id: uuid.UUID, include_history: bool = False) -> List[AttachmentVersion]:
        self._require_work_order(work_order_id)
        query = select(AttachmentVersion).where(AttachmentVersion.work_order_id == work_order_id)
        if not include_history:
            query = query.where(AttachmentVersion.is_latest.is_(True))
        query = query.order_by(AttachmentVersion.original_name, AttachmentVersion.version.desc())
        return list(self.db.execute(query).scalars().all())

    def get(self, attachment_id: uuid.UUID) -> AttachmentVersion:
        row = self.db.get(AttachmentVersion, attachment_id)
        if row is None:
            raise NotFoundError("Attachment not found")
        return row

    def open(self, attachment_id: uuid.UUID) -> Tuple[AttachmentVersion, str]:
        row = self.get(attachment_id)
        url = self.storage.get_download_url(row.storage_key, settings.download_url_ttl_seconds)
        if not url:
            raise NotFoundError("Attachment content not found")
        return row, url

    def upload(
        self,
        work_order_id: uuid.UUID,
        content: bytes,
        original_name: Optional[str],
        mime_type: Optional[str],
        size: Optional[int] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> AttachmentVersion:
        """
        Store a new version of ``original_name`` and make it the latest.

        The previous latest (if any) is demoted and becomes ``previous_id``.
        If anything fails after the row is inserted, the transaction rolls back
        and bytes already written are removed.
        """
        name = clean_original_name(original_name)
        size = len(content) if size is None else size
        if size > settings.max_upload_bytes:
            raise ValidationError("File too large", details={"max_bytes": settings.max_upload_bytes})
        self._require_work_order(work_order_id)

        written_key = None
        try:
            previous = self._latest(work_order_id, name)
            if previous is not None:
                previous.is_latest = False
                # Demote before the insert so the latest-per-name index never sees two rows
                self.db.flush()

            stored_name, key = attachment_key(work_order_id, name, self.clock)
            row = AttachmentVersion(
                work_order_id=work_order_id,
                stored_name=stored_name,
                original_name=name,
                mime_type=mime_type or "application/octet-stream",
                size_bytes=size,
                storage_key=key,
                version=(previous.version + 1) if previous is not None else 1,
                is_latest=True,
                previous_id=previous.id if previous is not None else None,
                uploaded_by=actor_id,
                created_at=self.clock.now(),
            )
            self.db.add(row)
            self.db.flush()

            self.storage.put_bytes(key, content, row.mime_type)
            written_key = key

            self.audit.record_event(
                work_order_id,
                AuditAction.ATTACHMENT_UPLOADED,
                {
                    "attachment_id": str(row.id),
                    "original_name": name,
                    "version": row.version,
                    "previous_id": str(row.previous_id) if row.previous_id else None,
                },
                actor_id,
            )
            self.db.commit()
        except IntegrityError:
            self._rollback_upload(written_key)
            logger.info("attachment_upload_conflict", work_order_id=str(work_order_id), original_name=name)
            raise ConflictError(
                "Another version of this file was uploaded concurrently",
                current=self._latest(work_order_id, name),
            )
        except Exception:
            self._rollback_upload(written_key)
            raise

        self.db.refresh(row)
        logger.info(
            "attachment_uploaded",
            work_order_id=str(work_order_id),
            attachment_id=str(row.id),
            original_name=name,
            version=row.version,
        )
        return row

    def _rollback_upload(self, written_key: Optional[str]) -> None:
        self.db.rollback()
        if written_key:
            try:
                self.storage.delete(written_key)
            except Exception:
                logger.exception("attachment_rollback_cleanup_failed", key=written_key)

    def delete(self, attachment_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> Optional[AttachmentVersion]:
        """
        Remove one version, re-pointing the chain.

        Deleting the latest promotes the highest remaining version of the same
        name. The index row goes even if the byte removal fails afterwards.

        Returns:
            The promoted version, if one was promoted.
        """
        row = self.get(attachment_id)
        work_order_id = row.work_order_id
        key = row.storage_key
        was_latest = bool(row.is_latest)
        promoted = None
        try:
            if was_latest:
                row.is_latest = False
                self.db.flush()
                promoted = self.db.execute(
                    select(AttachmentVersion)
                    .where(
                        AttachmentVersion.work_order_id == work_order_id,
                        AttachmentVersion.original_name == row.original_name,
                        AttachmentVersion.id != row.id,
                    )
                    .order_by(AttachmentVersion.version.desc())
                    .limit(1)
                ).scalars().first()
                if promoted is not None:
                    promoted.is_latest = True

            # Later versions skip over the removed link
            self.db.execute(
                update(AttachmentVersion)
                .where(AttachmentVersion.previous_id == row.id)
                .values(previous_id=row.previous_id)
            )
            self.audit.record_event(
                work_order_id,
                AuditAction.ATTACHMENT_DELETED,
                {
                    "attachment_id": str(row.id),
                    "original_name": row.original_name,
                    "version": row.version,
                    "was_latest": was_latest,
                    "promoted_id": str(promoted.id) if promoted is not None else None,
                },
                actor_id,
            )
            self.db.delete(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        try:
            self.storage.delete(key)
        except Exception:
            # Accepted orphan window: the index no longer references the bytes
            logger.exception("attachment_bytes_orphaned", attachment_id=str(attachment_id), key=key)

        logger.info(
            "attachment_deleted",
            work_order_id=str(work_order_id),
            attachment_id=str(attachment_id),
            was_latest=was_latest,
            promoted_id=str(promoted.id) if promoted is not None else None,
        )
        return promoted
