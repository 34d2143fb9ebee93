from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from orderflow.models.domain import SupplierVerification


class SupplierVerificationUpdate(BaseModel):
    verified_status: SupplierVerification
    company_name: Optional[str] = Field(None, max_length=255)
    expected_version: Optional[int] = Field(None, ge=1)


class SupplierProfileRead(BaseModel):
    supplier_id: str
    company_name: Optional[str] = None
    verified_status: SupplierVerification
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    version: int

    class Config:
        from_attributes = True
