from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class FiscalSettingsBase(BaseModel):
    vat_number: Optional[str] = None
    tax_code: Optional[str] = None
    sdi_recipient_code: Optional[str] = None
    pec_email: Optional[str] = None
    tax_regime: Optional[str] = None
    iban: Optional[str] = None
    bank_name: Optional[str] = None
    default_document_type: Optional[str] = None
    withholding_tax: bool = False


class FiscalSettingsUpdate(FiscalSettingsBase):
    row_version: int

    @field_validator(
        "vat_number", "tax_code", "sdi_recipient_code", "pec_email",
        "tax_regime", "iban", "bank_name", "default_document_type",
        mode="before",
    )
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("iban")
    @classmethod
    def _compact_iban(cls, v):
        return v.replace(" ", "").upper() if v else v


class FiscalSettingsOut(FiscalSettingsBase):
    row_version: int
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
