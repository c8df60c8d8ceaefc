import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import ForbiddenError, conflict_state
from ..models.models import User
from ..schemas.users import UserOut, UserUpdate
from ..services.aggregate_store import AggregateStore
from ..services.clock import Clock, get_clock


router = APIRouter(prefix="/users", tags=["users"])


def _ensure_can_access(actor: User, user_id: uuid.UUID) -> None:
    if actor.id != user_id and not actor.is_admin:
        raise ForbiddenError("Not allowed to access another user's profile")


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    _ensure_can_access(actor, user_id)
    return AggregateStore(db, clock).get(User, user_id, "User")


@router.put("/{user_id}", response_model=UserOut)
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    _ensure_can_access(actor, user_id)
    store = AggregateStore(db, clock)
    stored = store.get(User, user_id, "User")
    values = payload.model_dump(exclude_unset=True, exclude={"row_version", "role", "is_active"})
    # Role and activation are admin decisions; None or the stored value leaves them as they are
    for field in ("role", "is_active"):
        value = getattr(payload, field)
        if value is None or value == getattr(stored, field):
            continue
        if not actor.is_admin:
            raise ForbiddenError(f"Only admins can change {field}")
        values[field] = value
    try:
        with conflict_state(UserOut):
            user = store.update(User, user_id, payload.row_version, values, "User")
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    return user
