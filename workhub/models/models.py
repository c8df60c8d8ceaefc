import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    BigInteger,
    Text,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy import event
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base
from ..errors import ImmutableRecordError


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkOrderStatus(str, enum.Enum):
    OPEN = "open"
    QUOTED = "quoted"
    PENDING_APPROVAL = "pending_approval"
    NEEDS_REVISION = "needs_revision"
    CUSTOM = "custom"
    CLOSED = "closed"


class PaymentStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    PARTIAL = "partial"
    PAID = "paid"


class AuditAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    NOTE = "note"
    ATTACHMENT_UPLOADED = "attachment_uploaded"
    ATTACHMENT_DELETED = "attachment_deleted"


class TimeEntrySource(str, enum.Enum):
    TIMER = "timer"
    MANUAL = "manual"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="user")  # admin|user
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin"

    @property
    def display_name(self) -> str:
        composed = " ".join(p for p in [self.first_name or "", self.last_name or ""] if p).strip()
        return composed or self.username


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class FiscalSettings(Base):
    """Company-wide fiscal data, a single row with id = 1"""
    __tablename__ = "fiscal_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    vat_number: Mapped[Optional[str]] = mapped_column(String(50))
    tax_code: Mapped[Optional[str]] = mapped_column(String(50))
    sdi_recipient_code: Mapped[Optional[str]] = mapped_column(String(20))
    pec_email: Mapped[Optional[str]] = mapped_column(String(255))
    tax_regime: Mapped[Optional[str]] = mapped_column(String(20))
    iban: Mapped[Optional[str]] = mapped_column(String(50))
    bank_name: Mapped[Optional[str]] = mapped_column(String(255))
    default_document_type: Mapped[Optional[str]] = mapped_column(String(50), default="invoice")
    withholding_tax: Mapped[bool] = mapped_column(Boolean, default=False)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class WorkOrder(Base):
    """Billable unit of client engagement"""
    __tablename__ = "work_orders"

    id: Mapped[uuid.UUID] = uuid_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), index=True)
    client_name: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=WorkOrderStatus.OPEN.value, index=True)
    sub_status: Mapped[Optional[str]] = mapped_column(String(255))  # work phase, empty once closed
    payment_status: Mapped[str] = mapped_column(String(50), nullable=False, default=PaymentStatus.NOT_STARTED.value, index=True)
    quoted_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0-100
    estimated_hours: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    responsible: Mapped[Optional[str]] = mapped_column(String(255))
    location: Mapped[Optional[str]] = mapped_column(String(500))
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="SET NULL"), index=True)
    is_structural: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # organizational container, not billable
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("parent_id IS NULL OR parent_id <> id", name="ck_work_order_not_own_parent"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_work_order_progress_range"),
    )


class BoardCard(Base):
    """Task-board entry, optionally linked to a work order"""
    __tablename__ = "board_cards"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="SET NULL"), index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    lane: Mapped[Optional[str]] = mapped_column(String(100))  # board column label
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AttachmentVersion(Base):
    """One stored version of a named work-order attachment"""
    __tablename__ = "work_order_attachments"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False)
    stored_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(String(255))
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_latest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    previous_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("work_order_attachments.id", ondelete="SET NULL"))
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_attachment_name", "work_order_id", "original_name", "version"),
        # At most one latest row per (work order, original name)
        Index(
            "uq_attachment_latest_per_name",
            "work_order_id",
            "original_name",
            unique=True,
            sqlite_where=text("is_latest = 1"),
            postgresql_where=text("is_latest"),
        ),
        CheckConstraint("version >= 1", name="ck_attachment_version_positive"),
    )


class AuditEntry(Base):
    """Append-only history of work-order mutations"""
    __tablename__ = "work_order_audit"

    # Sequential id keeps insertion order for entries sharing a timestamp
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # create|update|note|attachment_uploaded|attachment_deleted
    changes: Mapped[Optional[dict]] = mapped_column(JSON)  # tagged payload: {"kind": "diff"|"note"|"event", ...}
    board_card_ids: Mapped[Optional[list]] = mapped_column(JSON)  # frozen at write time
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_audit_work_order", "work_order_id", "created_at"),
    )


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)  # authoritative only once ended_at is set
    note: Mapped[Optional[str]] = mapped_column(String(1000))
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=TimeEntrySource.TIMER.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_time_entry_user", "user_id", "started_at"),
        # At most one running timer per user
        Index(
            "uq_time_entry_open_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
    )


@event.listens_for(AuditEntry, "before_update")
def _audit_entry_is_immutable(mapper, connection, target):
    raise ImmutableRecordError(f"Audit entry {target.id} cannot be modified")


@event.listens_for(AuditEntry, "before_delete")
def _audit_entry_is_append_only(mapper, connection, target):
    raise ImmutableRecordError(f"Audit entry {target.id} cannot be deleted")
