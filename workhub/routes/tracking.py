import uuid
from typing import Optional

from fastapi import APIRouter, Depends

from ..auth.security import get_current_user
from ..deps import get_time_tracking
from ..models.models import User
from ..schemas.tracking import ManualEntryIn, TimeEntryOut, TrackingStartIn, WorkOrderTimesheetOut
from ..services.time_tracking import TimeTrackingEngine


router = APIRouter(prefix="/tracking", tags=["tracking"])


@router.get("/active", response_model=Optional[TimeEntryOut])
def get_active(engine: TimeTrackingEngine = Depends(get_time_tracking), user: User = Depends(get_current_user)):
    entry = engine.active(user.id)
    return engine.to_out(entry, user) if entry is not None else None


@router.get("/work-orders/{work_order_id}/entries", response_model=WorkOrderTimesheetOut)
def get_entries(
    work_order_id: uuid.UUID,
    engine: TimeTrackingEngine = Depends(get_time_tracking),
    user: User = Depends(get_current_user),
):
    return engine.entries_for(work_order_id)


@router.post("/start", response_model=TimeEntryOut, status_code=201)
def start_tracking(
    payload: TrackingStartIn,
    engine: TimeTrackingEngine = Depends(get_time_tracking),
    user: User = Depends(get_current_user),
):
    return engine.to_out(engine.start(payload.work_order_id, user), user)


@router.put("/entries/{entry_id}/stop", response_model=TimeEntryOut)
def stop_tracking(
    entry_id: uuid.UUID,
    engine: TimeTrackingEngine = Depends(get_time_tracking),
    user: User = Depends(get_current_user),
):
    return engine.to_out(engine.stop(entry_id, user))


@router.post("/manual", response_model=TimeEntryOut, status_code=201)
def add_manual_entry(
    payload: ManualEntryIn,
    engine: TimeTrackingEngine = Depends(get_time_tracking),
    user: User = Depends(get_current_user),
):
    entry = engine.add_manual(payload.work_order_id, payload.work_date, payload.hours, payload.note, user)
    return engine.to_out(entry, user)
