"""
Per-user time tracking.

A user is either idle or tracking exactly one open entry (``ended_at`` is
NULL). Running time is derived from the clock on read and only persisted when
the entry is stopped. Manual entries are closed on creation and never touch
the open slot.
"""
import uuid
from datetime import date
from typing import Any, List, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..models.models import TimeEntry, TimeEntrySource, User, WorkOrder
from ..schemas.tracking import TimeEntryOut, WorkOrderTimesheetOut
from ..schemas.work_orders import WorkOrderOut
from .clock import Clock
from .time_rules import elapsed_minutes, hours_to_minutes, local_date, local_midnight_utc, minutes_between, parse_hours


logger = structlog.get_logger(__name__)


class TimeTrackingEngine:
    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock

    def _require_work_order(self, work_order_id: uuid.UUID) -> WorkOrder:
        wo = self.db.get(WorkOrder, work_order_id)
        if wo is None:
            raise NotFoundError("Work order not found")
        return wo

    def elapsed_minutes(self, entry: TimeEntry) -> Optional[int]:
        if entry.ended_at is not None:
            return None
        return elapsed_minutes(entry.started_at, self.clock.now())

    def to_out(self, entry: TimeEntry, user: Optional[User] = None) -> TimeEntryOut:
        if user is None:
            user = self.db.get(User, entry.user_id)
        return TimeEntryOut(
            id=entry.id,
            work_order_id=entry.work_order_id,
            user_id=entry.user_id,
            username=user.username if user else None,
            user_display_name=user.display_name if user else None,
            work_date=entry.work_date,
            started_at=entry.started_at,
            ended_at=entry.ended_at,
            duration_minutes=entry.duration_minutes,
            running_minutes=self.elapsed_minutes(entry),
            note=entry.note,
            source=entry.source,
            created_at=entry.created_at,
        )

    def active(self, user_id: uuid.UUID) -> Optional[TimeEntry]:
        return self.db.execute(
            select(TimeEntry).where(TimeEntry.user_id == user_id, TimeEntry.ended_at.is_(None))
        ).scalars().first()

    def start(self, work_order_id: uuid.UUID, actor: User) -> TimeEntry:
        self._require_work_order(work_order_id)

        active = self.active(actor.id)
        if active is not None:
            logger.info("tracking_conflict", user_id=str(actor.id), active_entry_id=str(active.id))
            raise ConflictError("A timer is already running", current=self.to_out(active, actor), current_key="active")

        now = self.clock.now()
        entry = TimeEntry(
            work_order_id=work_order_id,
            user_id=actor.id,
            work_date=local_date(now),
            started_at=now,
            source=TimeEntrySource.TIMER.value,
            created_at=now,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except IntegrityError:
            # A concurrent start won the open-entry index
            self.db.rollback()
            active = self.active(actor.id)
            logger.info("tracking_conflict", user_id=str(actor.id), concurrent=True)
            raise ConflictError(
                "A timer is already running",
                current=self.to_out(active, actor) if active is not None else None,
                current_key="active",
            )
        self.db.refresh(entry)
        logger.info("tracking_started", entry_id=str(entry.id), work_order_id=str(work_order_id), user_id=str(actor.id))
        return entry

    def stop(self, entry_id: uuid.UUID, actor: User) -> TimeEntry:
        entry = self.db.get(TimeEntry, entry_id)
        if entry is None:
            raise NotFoundError("Time entry not found")
        if entry.user_id != actor.id and not actor.is_admin:
            raise ForbiddenError("Not allowed to stop another user's timer")
        if entry.ended_at is not None:
            raise ConflictError("Timer already stopped", current=self.to_out(entry), current_key="entry")

        now = self.clock.now()
        minutes = minutes_between(entry.started_at, now)
        result = self.db.execute(
            update(TimeEntry)
            .where(TimeEntry.id == entry_id, TimeEntry.ended_at.is_(None))
            .values(ended_at=now, duration_minutes=minutes, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Lost the race to another stop; its duration stands
            self.db.rollback()
            entry = self.db.get(TimeEntry, entry_id, populate_existing=True)
            raise ConflictError("Timer already stopped", current=self.to_out(entry), current_key="entry")
        self.db.commit()
        self.db.refresh(entry)
        logger.info("tracking_stopped", entry_id=str(entry_id), user_id=str(entry.user_id), duration_minutes=minutes)
        return entry

    def add_manual(
        self,
        work_order_id: uuid.UUID,
        work_date: date,
        hours: Any,
        note: Optional[str],
        actor: User,
    ) -> TimeEntry:
        """
        Record hours worked on ``work_date`` without a timer.

        The entry starts and ends at local midnight of that day; its duration
        is the hour amount converted to minutes, rounded half up.
        """
        self._require_work_order(work_order_id)
        try:
            parsed = parse_hours(hours)
        except ValueError as exc:
            raise ValidationError("Invalid hours", details={"hours": str(exc)})

        midnight = local_midnight_utc(work_date)
        entry = TimeEntry(
            work_order_id=work_order_id,
            user_id=actor.id,
            work_date=work_date,
            started_at=midnight,
            ended_at=midnight,
            duration_minutes=hours_to_minutes(parsed),
            note=note,
            source=TimeEntrySource.MANUAL.value,
            created_at=self.clock.now(),
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.info(
            "tracking_manual_added",
            entry_id=str(entry.id),
            work_order_id=str(work_order_id),
            user_id=str(actor.id),
            duration_minutes=entry.duration_minutes,
        )
        return entry

    def entries_for(self, work_order_id: uuid.UUID) -> WorkOrderTimesheetOut:
        wo = self._require_work_order(work_order_id)
        rows = self.db.execute(
            select(TimeEntry, User)
            .outerjoin(User, User.id == TimeEntry.user_id)
            .where(TimeEntry.work_order_id == work_order_id)
            .order_by(TimeEntry.started_at.desc(), TimeEntry.created_at.desc())
        ).all()
        total = self.db.execute(
            select(func.coalesce(func.sum(TimeEntry.duration_minutes), 0))
            .where(TimeEntry.work_order_id == work_order_id, TimeEntry.ended_at.is_not(None))
        ).scalar_one()
        entries: List[TimeEntryOut] = [self.to_out(entry, user) for entry, user in rows]
        return WorkOrderTimesheetOut(
            work_order=WorkOrderOut.model_validate(wo),
            entries=entries,
            total_minutes=int(total or 0),
        )
