"""
Work-order audit trail.
Append-only history of field-level diffs, notes and attachment events.

Each entry freezes the ids of the board cards linked to the work order at
write time. Appends only add and flush: the caller's transaction commits the
entry together with the change it describes.
"""
import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models.models import AuditAction, AuditEntry, BoardCard, User, WorkOrder
from ..schemas.audit import AuditActor, AuditChanges, AuditEntryOut, FieldChange
from .clock import Clock
from .time_rules import local_midnight_utc


logger = structlog.get_logger(__name__)


AUDITED_FIELDS = (
    "title",
    "client_id",
    "client_name",
    "status",
    "sub_status",
    "payment_status",
    "quoted_amount",
    "total_amount",
    "paid_amount",
    "progress",
    "estimated_hours",
    "responsible",
    "location",
    "start_date",
    "end_date",
    "notes",
    "parent_id",
    "is_structural",
)

_DECIMAL_FIELDS = {"quoted_amount", "total_amount", "paid_amount", "estimated_hours"}


def normalize_value(field: str, value: Any) -> Any:
    """JSON-safe, comparison-stable form of a work-order field value."""
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        value = value.value
    if field in _DECIMAL_FIELDS:
        return format(Decimal(str(value)).quantize(Decimal("0.01")), "f")
    if isinstance(value, bool):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def snapshot(work_order: WorkOrder) -> Dict[str, Any]:
    return {f: normalize_value(f, getattr(work_order, f, None)) for f in AUDITED_FIELDS}


def compute_diff(before: Dict[str, Any], after: Dict[str, Any]) -> List[FieldChange]:
    """
    Field-level diff across the audited whitelist.

    Args:
        before: Pre-mutation values (raw or already normalized)
        after: Proposed next values; fields absent here are left out of the diff

    Returns:
        One FieldChange per changed field, in whitelist order
    """
    changes = []
    for field in AUDITED_FIELDS:
        if field not in after:
            continue
        old = normalize_value(field, before.get(field))
        new = normalize_value(field, after.get(field))
        if old != new:
            changes.append(FieldChange(field=field, from_=old, to=new))
    return changes


class AuditTrail:
    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock

    def linked_board_card_ids(self, work_order_id: uuid.UUID) -> List[str]:
        rows = self.db.execute(
            select(BoardCard.id)
            .where(BoardCard.work_order_id == work_order_id)
            .order_by(BoardCard.created_at, BoardCard.id)
        ).scalars().all()
        return [str(r) for r in rows]

    def _append(
        self,
        work_order_id: uuid.UUID,
        action: AuditAction,
        changes: AuditChanges,
        actor_id: Optional[uuid.UUID],
        created_at: Optional[datetime] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            work_order_id=work_order_id,
            actor_id=actor_id,
            action=action.value,
            changes=changes.model_dump(mode="json", by_alias=True),
            board_card_ids=self.linked_board_card_ids(work_order_id),
            created_at=created_at or self.clock.now(),
        )
        self.db.add(entry)
        self.db.flush()
        logger.info(
            "audit_appended",
            work_order_id=str(work_order_id),
            action=action.value,
            actor_id=str(actor_id) if actor_id else None,
        )
        return entry

    def record_created(self, work_order: WorkOrder, actor_id: Optional[uuid.UUID]) -> AuditEntry:
        initial = compute_diff({}, snapshot(work_order))
        return self._append(work_order.id, AuditAction.CREATE, AuditChanges(kind="diff", changes=initial), actor_id)

    def record_update(
        self,
        work_order_id: uuid.UUID,
        before: Dict[str, Any],
        after: Dict[str, Any],
        actor_id: Optional[uuid.UUID],
    ) -> Optional[AuditEntry]:
        """Append an update entry, or nothing when no audited field changed."""
        changes = compute_diff(before, after)
        if not changes:
            return None
        return self._append(work_order_id, AuditAction.UPDATE, AuditChanges(kind="diff", changes=changes), actor_id)

    def record_event(
        self,
        work_order_id: uuid.UUID,
        action: AuditAction,
        data: Dict[str, Any],
        actor_id: Optional[uuid.UUID],
    ) -> AuditEntry:
        return self._append(work_order_id, action, AuditChanges(kind="event", data=data), actor_id)

    def add_note(
        self,
        work_order_id: uuid.UUID,
        text: str,
        note_date: Optional[date],
        actor_id: Optional[uuid.UUID],
    ) -> AuditEntry:
        """Backdated notes sort at local midnight of their day."""
        self._require_work_order(work_order_id)
        created_at = local_midnight_utc(note_date) if note_date else None
        return self._append(work_order_id, AuditAction.NOTE, AuditChanges(kind="note", text=text), actor_id, created_at)

    def history(self, work_order_id: uuid.UUID) -> List[AuditEntryOut]:
        self._require_work_order(work_order_id)
        rows = self.db.execute(
            select(AuditEntry, User)
            .outerjoin(User, User.id == AuditEntry.actor_id)
            .where(AuditEntry.work_order_id == work_order_id)
            .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
        ).all()
        out = []
        for entry, user in rows:
            actor = None
            if user is not None:
                actor = AuditActor(id=user.id, username=user.username, display_name=user.display_name)
            out.append(AuditEntryOut(
                id=entry.id,
                work_order_id=entry.work_order_id,
                action=entry.action,
                actor=actor,
                changes=AuditChanges.model_validate(entry.changes) if entry.changes else None,
                board_card_ids=entry.board_card_ids or [],
                created_at=entry.created_at,
            ))
        return out

    def _require_work_order(self, work_order_id: uuid.UUID) -> None:
        if self.db.get(WorkOrder, work_order_id) is None:
            raise NotFoundError("Work order not found")
