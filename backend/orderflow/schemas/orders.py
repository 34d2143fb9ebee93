from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from orderflow.models.domain import OrderStatus


class OrderRead(BaseModel):
    id: str
    order_number: str
    rfq_id: str
    curated_offer_id: str
    buyer_id: str
    supplier_id: Optional[str] = None
    admin_id: Optional[str] = None
    status: OrderStatus
    total_amount: Decimal
    currency: str
    advance_amount: Decimal
    deposit_percent: int
    deposit_paid: bool
    delivered_at: Optional[datetime] = None
    buyer_invoice_approved: bool
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    expected_version: Optional[int] = Field(None, ge=1)


class InvoiceApproval(BaseModel):
    expected_version: Optional[int] = Field(None, ge=1)


class ProductionUpdateCreate(BaseModel):
    stage: str = Field(..., min_length=1, max_length=64)
    detail: Optional[str] = None


class ProductionUpdateRead(BaseModel):
    id: str
    order_id: str
    stage: str
    detail: Optional[str] = None
    updated_by: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderBalanceRead(BaseModel):
    order_id: str
    currency: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    is_fully_paid: bool

    class Config:
        from_attributes = True


class PaymentStatusRead(BaseModel):
    order_id: str
    payment_status: Literal["not_started", "partial", "completed"]
