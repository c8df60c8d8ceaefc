import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Response

from ..auth.security import get_current_user
from ..deps import get_audit_trail, get_work_order_service
from ..errors import conflict_state
from ..models.models import PaymentStatus, User, WorkOrderStatus
from ..schemas.audit import AuditEntryOut, AuditNoteIn
from ..schemas.work_orders import SuccessOut, WorkOrderCreate, WorkOrderOut, WorkOrderUpdate
from ..services.audit import AuditTrail
from ..services.work_orders import WorkOrderService


router = APIRouter(prefix="/work-orders", tags=["work-orders"])


@router.get("", response_model=List[WorkOrderOut])
def list_work_orders(
    client_id: Optional[uuid.UUID] = None,
    status: Optional[WorkOrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    parent_id: Optional[uuid.UUID] = None,
    service: WorkOrderService = Depends(get_work_order_service),
    user: User = Depends(get_current_user),
):
    return service.list(
        client_id=client_id,
        status=status.value if status else None,
        payment_status=payment_status.value if payment_status else None,
        parent_id=parent_id,
    )


@router.post("", response_model=WorkOrderOut, status_code=201)
def create_work_order(
    payload: WorkOrderCreate,
    service: WorkOrderService = Depends(get_work_order_service),
    user: User = Depends(get_current_user),
):
    return service.create(payload.model_dump(), user.id)


@router.get("/{work_order_id}", response_model=WorkOrderOut)
def get_work_order(
    work_order_id: uuid.UUID,
    service: WorkOrderService = Depends(get_work_order_service),
    user: User = Depends(get_current_user),
):
    return service.get(work_order_id)


@router.put("/{work_order_id}", response_model=WorkOrderOut)
def update_work_order(
    work_order_id: uuid.UUID,
    payload: WorkOrderUpdate,
    service: WorkOrderService = Depends(get_work_order_service),
    user: User = Depends(get_current_user),
):
    values = payload.model_dump(exclude={"row_version"})
    with conflict_state(WorkOrderOut):
        return service.update(work_order_id, payload.row_version, values, user.id)


@router.delete("/{work_order_id}", response_model=SuccessOut)
def delete_work_order(
    work_order_id: uuid.UUID,
    service: WorkOrderService = Depends(get_work_order_service),
    user: User = Depends(get_current_user),
):
    service.delete(work_order_id, user.id)
    return SuccessOut()


@router.get("/{work_order_id}/audit", response_model=List[AuditEntryOut])
def read_audit(
    work_order_id: uuid.UUID,
    audit: AuditTrail = Depends(get_audit_trail),
    user: User = Depends(get_current_user),
):
    return audit.history(work_order_id)


@router.post("/{work_order_id}/audit", status_code=201, response_class=Response)
def add_audit_note(
    work_order_id: uuid.UUID,
    payload: AuditNoteIn,
    audit: AuditTrail = Depends(get_audit_trail),
    user: User = Depends(get_current_user),
):
    try:
        audit.add_note(work_order_id, payload.text, payload.note_date, user.id)
        audit.db.commit()
    except Exception:
        audit.db.rollback()
        raise
    return Response(status_code=201)
