from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from orderflow.api.deps import CurrentUser, get_db, require_roles
from orderflow.models import RoleName
from orderflow.schemas.suppliers import SupplierProfileRead, SupplierVerificationUpdate
from orderflow.services import suppliers

router = APIRouter(prefix="/suppliers", tags=["suppliers"])

_DB_DEP = Depends(get_db)


@router.get(
    "",
    response_model=List[SupplierProfileRead],
    dependencies=[Depends(require_roles(RoleName.admin))],
)
def list_suppliers(
    verified_only: bool = Query(False, description="Only suppliers on a verified tier."),
    db: Session = _DB_DEP,
):
    return suppliers.list_supplier_profiles(db=db, verified_only=verified_only)


@router.get("/{supplier_id}", response_model=SupplierProfileRead)
def get_supplier(
    supplier_id: str,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.supplier)),
):
    if user.role != RoleName.admin and user.id != supplier_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")
    return suppliers.get_supplier_profile(db=db, supplier_id=supplier_id)


@router.post("/{supplier_id}/verification", response_model=SupplierProfileRead)
def set_verification(
    supplier_id: str,
    payload: SupplierVerificationUpdate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.admin)),
):
    return suppliers.set_supplier_verification(
        db=db,
        supplier_id=supplier_id,
        verified_status=payload.verified_status,
        actor_id=user.id,
        company_name=payload.company_name,
        expected_version=payload.expected_version,
    )
