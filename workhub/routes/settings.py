from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin
from ..db import get_db
from ..errors import conflict_state
from ..models.models import FiscalSettings, User
from ..schemas.settings import FiscalSettingsOut, FiscalSettingsUpdate
from ..services.aggregate_store import AggregateStore
from ..services.clock import Clock, get_clock


router = APIRouter(prefix="/settings", tags=["settings"])

FISCAL_SETTINGS_ID = 1


def _fiscal_row(db: Session) -> FiscalSettings:
    row = db.get(FiscalSettings, FISCAL_SETTINGS_ID)
    if row is None:
        row = FiscalSettings(id=FISCAL_SETTINGS_ID)
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


@router.get("/fiscal", response_model=FiscalSettingsOut)
def get_fiscal_settings(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _fiscal_row(db)


@router.put("/fiscal", response_model=FiscalSettingsOut)
def update_fiscal_settings(
    payload: FiscalSettingsUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    _fiscal_row(db)
    values = payload.model_dump(exclude={"row_version"})
    try:
        with conflict_state(FiscalSettingsOut):
            row = AggregateStore(db, clock).update(FiscalSettings, FISCAL_SETTINGS_ID, payload.row_version, values, "Fiscal settings")
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    return row
