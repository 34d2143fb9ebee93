from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from orderflow.models.domain import TransactionSource, TransactionStatus, TransactionType


class PaymentEventBase(BaseModel):
    transaction_ref: str = Field(..., min_length=1, max_length=128)
    order_id: Optional[str] = None
    curated_offer_id: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    fees: Decimal = Field(Decimal("0"), ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    status: TransactionStatus
    transaction_type: TransactionType
    failure_reason: Optional[str] = None

    @model_validator(mode="after")
    def require_target(self):
        if not self.order_id and not self.curated_offer_id:
            raise ValueError("order_id or curated_offer_id is required")
        return self


class GatewayWebhookEvent(PaymentEventBase):
    """Callback body posted by the payment gateway."""

    payload: Optional[dict[str, Any]] = None


class SettlementCreate(PaymentEventBase):
    """Admin-entered settlement (bank transfer, manual reconciliation)."""

    notes: Optional[str] = None


class PaymentTransactionRead(BaseModel):
    id: str
    transaction_ref: str
    order_id: Optional[str] = None
    curated_offer_id: Optional[str] = None
    amount: Decimal
    fees: Decimal
    net_amount: Decimal
    currency: str
    status: TransactionStatus
    transaction_type: TransactionType
    source: TransactionSource
    failure_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
