from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from orderflow.api.deps import CurrentUser, get_current_user, get_db, require_roles
from orderflow.models import RfqStatus, RoleName
from orderflow.schemas.rfqs import RfqCreate, RfqRead, RfqStatusUpdate
from orderflow.services import rfq_lifecycle
from orderflow.services.rfq_lifecycle import RfqDraft

router = APIRouter(prefix="/rfqs", tags=["rfqs"])

_DB_DEP = Depends(get_db)
_USER_DEP = Depends(get_current_user)

# Moves a buyer may request on their own RFQ; everything else is an admin decision.
_BUYER_TARGETS = {RfqStatus.submitted, RfqStatus.accepted, RfqStatus.cancelled}


@router.post("", response_model=RfqRead, status_code=status.HTTP_201_CREATED)
def create_rfq(
    payload: RfqCreate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.buyer)),
):
    draft = RfqDraft(
        buyer_id=user.id,
        title=payload.title,
        details=payload.details,
        files=payload.files,
        budget_range=payload.budget_range,
        nda_required=payload.nda_required,
        confidential=payload.confidential,
        save_as_draft=payload.save_as_draft,
    )
    return rfq_lifecycle.submit_rfq(db=db, draft=draft)


@router.get("/{rfq_id}", response_model=RfqRead)
def get_rfq(rfq_id: str, db: Session = _DB_DEP, user: CurrentUser = _USER_DEP):
    rfq = rfq_lifecycle.get_rfq(db=db, rfq_id=rfq_id)
    if user.role == RoleName.buyer and rfq.buyer_id != user.id:
        raise HTTPException(status_code=404, detail="RFQ not found")
    return rfq


@router.post("/{rfq_id}/status", response_model=RfqRead)
def update_rfq_status(
    rfq_id: str,
    payload: RfqStatusUpdate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.buyer)),
):
    if user.role == RoleName.buyer:
        rfq = rfq_lifecycle.get_rfq(db=db, rfq_id=rfq_id)
        if rfq.buyer_id != user.id:
            raise HTTPException(status_code=404, detail="RFQ not found")
        if payload.status not in _BUYER_TARGETS:
            raise HTTPException(status_code=403, detail="Insufficient role")

    return rfq_lifecycle.transition_rfq_status(
        db=db,
        rfq_id=rfq_id,
        to_status=payload.status,
        expected_version=payload.expected_version,
        actor_id=user.id,
    )
