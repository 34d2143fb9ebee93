from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from orderflow.models.domain import InviteStatus, QuoteStatus, RfqStatus


class RfqCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    details: dict[str, Any] = Field(..., description="Industry, process/SKU selection and line items")
    files: Optional[List[dict[str, Any]]] = None
    budget_range: Optional[dict[str, Any]] = None
    nda_required: bool = False
    confidential: bool = False
    save_as_draft: bool = False

    @field_validator("title")
    @classmethod
    def clean_title(cls, v: str) -> str:
        vv = v.strip()
        if not vv:
            raise ValueError("title must not be blank")
        return vv


class RfqRead(BaseModel):
    id: str
    rfq_number: str
    buyer_id: str
    title: str
    status: RfqStatus
    details: dict[str, Any]
    files: Optional[List[dict[str, Any]]] = None
    budget_range: Optional[dict[str, Any]] = None
    nda_required: bool
    confidential: bool
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StatusTransitionRequest(BaseModel):
    # Optimistic concurrency: the version the caller last read.
    expected_version: Optional[int] = Field(None, ge=1)


class RfqStatusUpdate(StatusTransitionRequest):
    status: RfqStatus


class InviteCreate(BaseModel):
    supplier_id: str = Field(..., min_length=1, max_length=64)
    response_deadline: Optional[datetime] = None


class InviteRead(BaseModel):
    id: str
    rfq_id: str
    supplier_id: str
    invited_by: str
    status: InviteStatus
    response_deadline: Optional[datetime] = None
    invited_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QuoteCreate(BaseModel):
    price: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    lead_time_days: int = Field(..., gt=0)
    terms: Optional[dict[str, Any]] = None


class QuoteDecision(BaseModel):
    decision: QuoteStatus

    @field_validator("decision")
    @classmethod
    def only_final(cls, v: QuoteStatus) -> QuoteStatus:
        if v == QuoteStatus.submitted:
            raise ValueError("decision must be accepted or rejected")
        return v


class QuoteRead(BaseModel):
    id: str
    invite_id: str
    rfq_id: str
    supplier_id: str
    quote_version: int
    price: Decimal
    currency: str
    lead_time_days: int
    terms: Optional[dict[str, Any]] = None
    status: QuoteStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
