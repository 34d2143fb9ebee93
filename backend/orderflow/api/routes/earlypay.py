from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from orderflow.api.deps import CurrentUser, get_db, require_roles
from orderflow.models import EarlyPayStatus, RoleName
from orderflow.schemas.earlypay import EarlyPayCreate, EarlyPayRead, EarlyPayStatusUpdate
from orderflow.services import earlypay

router = APIRouter(prefix="/earlypay", tags=["earlypay"])

_DB_DEP = Depends(get_db)


@router.post("", response_model=EarlyPayRead, status_code=status.HTTP_201_CREATED)
def submit_request(
    payload: EarlyPayCreate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.supplier)),
):
    draft = earlypay.EarlyPayDraft(
        supplier_id=user.id,
        invoice_number=payload.invoice_number,
        order_id=payload.order_id,
        amount=payload.amount,
        currency=payload.currency,
        delivered_confirmed=payload.delivered_confirmed,
        buyer_invoice_approved=payload.buyer_invoice_approved,
        expected_days=payload.expected_days,
        notes=payload.notes,
    )
    return earlypay.submit_early_pay_request(db=db, draft=draft)


@router.get("", response_model=List[EarlyPayRead])
def list_requests(
    status_filter: Optional[EarlyPayStatus] = Query(None, alias="status"),
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.supplier)),
):
    supplier_id = None if user.role == RoleName.admin else user.id
    return earlypay.list_early_pay_requests(db=db, supplier_id=supplier_id, status=status_filter)


@router.post("/{request_id}/status", response_model=EarlyPayRead)
def update_request_status(
    request_id: str,
    payload: EarlyPayStatusUpdate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.admin)),
):
    return earlypay.set_early_pay_status(
        db=db,
        request_id=request_id,
        to_status=payload.status,
        actor_id=user.id,
        notes=payload.notes,
        expected_version=payload.expected_version,
    )
