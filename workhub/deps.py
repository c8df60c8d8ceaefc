"""Per-request service construction for FastAPI ``Depends``."""
from fastapi import Depends
from sqlalchemy.orm import Session

from .db import get_db
from .services.attachments import AttachmentVersionChain
from .services.audit import AuditTrail
from .services.clock import Clock, get_clock
from .services.time_tracking import TimeTrackingEngine
from .services.work_orders import WorkOrderService
from .storage.factory import get_storage
from .storage.provider import StorageProvider


def get_audit_trail(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> AuditTrail:
    return AuditTrail(db, clock)


def get_work_order_service(
    db: Session = Depends(get_db),
    audit: AuditTrail = Depends(get_audit_trail),
    storage: StorageProvider = Depends(get_storage),
) -> WorkOrderService:
    return WorkOrderService(db, audit, storage)


def get_attachment_chain(
    db: Session = Depends(get_db),
    audit: AuditTrail = Depends(get_audit_trail),
    storage: StorageProvider = Depends(get_storage),
    clock: Clock = Depends(get_clock),
) -> AttachmentVersionChain:
    return AttachmentVersionChain(db, storage, audit, clock)


def get_time_tracking(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> TimeTrackingEngine:
    return TimeTrackingEngine(db, clock)
