"""
Work-order lifecycle: create, versioned update, delete.

Updates go through AggregateStore (version check and write) and then
AuditTrail (diff and append) in the same transaction.
"""
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from ..models.models import AttachmentVersion, Client, WorkOrder
from ..storage.provider import StorageProvider
from .aggregate_store import AggregateStore
from .audit import AuditTrail, snapshot


logger = structlog.get_logger(__name__)


class WorkOrderService:
    def __init__(self, db: Session, audit: AuditTrail, storage: StorageProvider):
        self.db = db
        self.audit = audit
        self.storage = storage
        self.store = AggregateStore(db, audit.clock)

    def get(self, work_order_id: uuid.UUID) -> WorkOrder:
        return self.store.get(WorkOrder, work_order_id, "Work order")

    def list(
        self,
        client_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        parent_id: Optional[uuid.UUID] = None,
    ) -> List[WorkOrder]:
        query = select(WorkOrder)
        if client_id:
            query = query.where(WorkOrder.client_id == client_id)
        if status:
            query = query.where(WorkOrder.status == status)
        if payment_status:
            query = query.where(WorkOrder.payment_status == payment_status)
        if parent_id:
            query = query.where(WorkOrder.parent_id == parent_id)
        query = query.order_by(WorkOrder.created_at.desc(), WorkOrder.title)
        return list(self.db.execute(query).scalars().all())

    def _check_client(self, client_id: Optional[uuid.UUID]) -> None:
        if client_id is not None and self.db.get(Client, client_id) is None:
            raise NotFoundError("Client not found")

    def _check_parent(self, work_order_id: Optional[uuid.UUID], parent_id: Optional[uuid.UUID]) -> None:
        """Parent must exist and the parent chain must never lead back to this work order."""
        if parent_id is None:
            return
        if parent_id == work_order_id:
            raise ValidationError("A work order cannot be its own parent")
        if self.db.get(WorkOrder, parent_id) is None:
            raise NotFoundError("Parent work order not found")
        if work_order_id is None:
            return
        seen = set()
        cursor = parent_id
        while cursor is not None and cursor not in seen:
            if cursor == work_order_id:
                raise ValidationError("Parent would create a cycle")
            seen.add(cursor)
            parent = self.db.get(WorkOrder, cursor)
            cursor = parent.parent_id if parent is not None else None

    def create(self, values: Dict[str, Any], actor_id: Optional[uuid.UUID]) -> WorkOrder:
        self._check_client(values.get("client_id"))
        self._check_parent(None, values.get("parent_id"))
        try:
            wo = WorkOrder(**values)
            self.db.add(wo)
            self.db.flush()
            self.audit.record_created(wo, actor_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(wo)
        logger.info("work_order_created", work_order_id=str(wo.id), actor_id=str(actor_id) if actor_id else None)
        return wo

    def update(
        self,
        work_order_id: uuid.UUID,
        expected_version: int,
        values: Dict[str, Any],
        actor_id: Optional[uuid.UUID],
    ) -> WorkOrder:
        """
        Apply the full field set if nobody changed the work order since
        ``expected_version``, and audit what actually changed.

        Raises:
            NotFoundError: unknown work order, client or parent
            ValidationError: parent is the work order itself or one of its descendants
            ConflictError: stale ``expected_version``; carries the stored row
        """
        before = snapshot(self.get(work_order_id))
        self._check_client(values.get("client_id"))
        self._check_parent(work_order_id, values.get("parent_id"))
        try:
            wo = self.store.update(WorkOrder, work_order_id, expected_version, values, "Work order")
            self.audit.record_update(work_order_id, before, values, actor_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(wo)
        logger.info(
            "work_order_updated",
            work_order_id=str(work_order_id),
            row_version=wo.row_version,
            actor_id=str(actor_id) if actor_id else None,
        )
        return wo

    def delete(self, work_order_id: uuid.UUID, actor_id: Optional[uuid.UUID]) -> None:
        """Attachments, audit and time entries go with the row; attachment bytes follow after commit."""
        wo = self.get(work_order_id)
        keys = self.db.execute(
            select(AttachmentVersion.storage_key).where(AttachmentVersion.work_order_id == work_order_id)
        ).scalars().all()
        try:
            self.db.delete(wo)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        for key in keys:
            try:
                self.storage.delete(key)
            except Exception:
                logger.exception("attachment_bytes_orphaned", work_order_id=str(work_order_id), key=key)
        logger.info(
            "work_order_deleted",
            work_order_id=str(work_order_id),
            attachments=len(keys),
            actor_id=str(actor_id) if actor_id else None,
        )
