import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, ValidationInfo, field_validator, model_validator

from ..models.models import PaymentStatus, WorkOrderStatus


# field -> (minimum, maximum, value used when the field is sent empty)
WORK_ORDER_NUMERIC_RULES = {
    "quoted_amount": (Decimal("0"), None, Decimal("0")),
    "total_amount": (Decimal("0"), None, Decimal("0")),
    "paid_amount": (Decimal("0"), None, Decimal("0")),
    "estimated_hours": (Decimal("0"), None, None),
    "progress": (Decimal("0"), Decimal("100"), Decimal("0")),
}


class WorkOrderBase(BaseModel):
    title: str
    client_id: Optional[uuid.UUID] = None
    client_name: Optional[str] = None
    status: WorkOrderStatus = WorkOrderStatus.OPEN
    sub_status: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.NOT_STARTED
    quoted_amount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    progress: int = 0
    estimated_hours: Optional[Decimal] = None
    responsible: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    is_structural: bool = False

    class Config:
        use_enum_values = True
        validate_default = True

    @field_validator("title", mode="before")
    @classmethod
    def _title_required(cls, v):
        v = str(v or "").strip()
        if not v:
            raise ValueError("title required")
        return v

    @field_validator("client_name", "sub_status", "responsible", "location", "notes", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator(*WORK_ORDER_NUMERIC_RULES, mode="before")
    @classmethod
    def _numeric_in_range(cls, v, info: ValidationInfo):
        minimum, maximum, empty = WORK_ORDER_NUMERIC_RULES[info.field_name]
        if v is None or (isinstance(v, str) and not v.strip()):
            return empty
        if isinstance(v, bool):
            raise ValueError("must be a number")
        try:
            number = Decimal(v.strip().replace(",", ".")) if isinstance(v, str) else Decimal(str(v))
        except InvalidOperation:
            raise ValueError("must be a number")
        if not number.is_finite():
            raise ValueError("must be a number")
        if minimum is not None and number < minimum:
            raise ValueError(f"must be >= {minimum}")
        if maximum is not None and number > maximum:
            raise ValueError(f"must be <= {maximum}")
        return number

    @model_validator(mode="after")
    def _closed_has_no_sub_status(self):
        if self.status == WorkOrderStatus.CLOSED.value and self.sub_status is not None:
            raise ValueError("sub_status must be empty when the work order is closed")
        return self


class WorkOrderCreate(WorkOrderBase):
    pass


class WorkOrderUpdate(WorkOrderBase):
    row_version: int


class WorkOrderOut(BaseModel):
    id: uuid.UUID
    title: str
    client_id: Optional[uuid.UUID] = None
    client_name: Optional[str] = None
    status: str
    sub_status: Optional[str] = None
    payment_status: str
    quoted_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    progress: int
    estimated_hours: Optional[Decimal] = None
    responsible: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    is_structural: bool
    row_version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SuccessOut(BaseModel):
    success: bool = True
