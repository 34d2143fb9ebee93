from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from orderflow.models.domain import OfferStatus


class OfferCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    total_price: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    # Omit both to split by DEFAULT_DEPOSIT_PERCENT.
    advance_amount: Optional[Decimal] = Field(None, ge=0)
    final_amount: Optional[Decimal] = Field(None, ge=0)
    details: Optional[dict[str, Any]] = None
    payment_link: Optional[str] = Field(None, max_length=512)
    payment_deadline: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    source_quote_ids: Optional[List[str]] = None


class OfferAction(BaseModel):
    expected_version: Optional[int] = Field(None, ge=1)


class OfferRead(BaseModel):
    id: str
    rfq_id: str
    admin_id: str
    title: str
    details: Optional[dict[str, Any]] = None
    total_price: Decimal
    currency: str
    advance_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None
    payment_link: Optional[str] = None
    payment_deadline: Optional[datetime] = None
    source_quote_ids: Optional[List[str]] = None
    status: OfferStatus
    published_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    version: int

    class Config:
        from_attributes = True
