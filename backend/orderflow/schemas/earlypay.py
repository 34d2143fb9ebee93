from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from orderflow.models.domain import EarlyPayStatus


class EarlyPayCreate(BaseModel):
    invoice_number: str = Field(..., min_length=1, max_length=64)
    order_id: Optional[str] = None
    # Eligibility is decided by the service so the failing precondition can be reported.
    amount: Decimal
    currency: str = Field(..., min_length=3, max_length=3)
    delivered_confirmed: bool
    buyer_invoice_approved: bool
    expected_days: int
    notes: Optional[str] = None


class EarlyPayStatusUpdate(BaseModel):
    status: EarlyPayStatus
    notes: Optional[str] = None
    expected_version: Optional[int] = Field(None, ge=1)


class EarlyPayRead(BaseModel):
    id: str
    supplier_id: str
    order_id: Optional[str] = None
    invoice_number: str
    amount: Decimal
    currency: str
    delivered_confirmed: bool
    buyer_invoice_approved: bool
    expected_days: int
    discount_rate: Decimal
    discount_amount: Decimal
    net_payout: Decimal
    status: EarlyPayStatus
    notes: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
