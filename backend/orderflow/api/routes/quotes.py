from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from orderflow.api.deps import CurrentUser, get_db, require_roles
from orderflow.models import RoleName
from orderflow.schemas.rfqs import InviteCreate, InviteRead, QuoteCreate, QuoteDecision, QuoteRead
from orderflow.services import rfq_lifecycle

router = APIRouter(tags=["quotes"])

_DB_DEP = Depends(get_db)


@router.post(
    "/rfqs/{rfq_id}/invites",
    response_model=InviteRead,
    status_code=status.HTTP_201_CREATED,
)
def invite_supplier(
    rfq_id: str,
    payload: InviteCreate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.admin)),
):
    return rfq_lifecycle.invite_supplier(
        db=db,
        rfq_id=rfq_id,
        supplier_id=payload.supplier_id,
        invited_by=user.id,
        response_deadline=payload.response_deadline,
    )


@router.get(
    "/rfqs/{rfq_id}/quotes",
    response_model=List[QuoteRead],
    dependencies=[Depends(require_roles(RoleName.admin))],
)
def list_quotes(rfq_id: str, db: Session = _DB_DEP):
    return rfq_lifecycle.list_quotes(db=db, rfq_id=rfq_id)


@router.post("/invites/{invite_id}/quotes", response_model=QuoteRead, status_code=status.HTTP_201_CREATED)
def submit_quote(
    invite_id: str,
    payload: QuoteCreate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.supplier)),
):
    return rfq_lifecycle.submit_quote(
        db=db,
        invite_id=invite_id,
        price=payload.price,
        currency=payload.currency,
        lead_time_days=payload.lead_time_days,
        terms=payload.terms,
        supplier_id=None if user.role == RoleName.admin else user.id,
    )


@router.post("/invites/{invite_id}/decline", response_model=InviteRead)
def decline_invite(
    invite_id: str,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.supplier)),
):
    return rfq_lifecycle.decline_invite(
        db=db,
        invite_id=invite_id,
        supplier_id=None if user.role == RoleName.admin else user.id,
    )


@router.post("/quotes/{quote_id}/decision", response_model=QuoteRead)
def decide_quote(
    quote_id: str,
    payload: QuoteDecision,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.admin)),
):
    return rfq_lifecycle.set_quote_decision(
        db=db, quote_id=quote_id, decision=payload.decision, actor_id=user.id
    )
