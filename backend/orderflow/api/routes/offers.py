from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from orderflow.api.deps import CurrentUser, get_current_user, get_db, require_roles
from orderflow.models import RoleName
from orderflow.schemas.offers import OfferAction, OfferCreate, OfferRead
from orderflow.schemas.orders import OrderRead
from orderflow.services import offers as offer_service
from orderflow.services import order_lifecycle

router = APIRouter(tags=["offers"])

_DB_DEP = Depends(get_db)


@router.post("/rfqs/{rfq_id}/offers", response_model=OfferRead, status_code=status.HTTP_201_CREATED)
def create_offer(
    rfq_id: str,
    payload: OfferCreate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.admin)),
):
    return offer_service.create_curated_offer(
        db=db,
        rfq_id=rfq_id,
        admin_id=user.id,
        title=payload.title,
        total_price=payload.total_price,
        currency=payload.currency,
        advance_amount=payload.advance_amount,
        final_amount=payload.final_amount,
        details=payload.details,
        payment_link=payload.payment_link,
        payment_deadline=payload.payment_deadline,
        expires_at=payload.expires_at,
        source_quote_ids=payload.source_quote_ids,
    )


@router.get("/offers/{offer_id}", response_model=OfferRead)
def get_offer(offer_id: str, db: Session = _DB_DEP, user: CurrentUser = Depends(get_current_user)):
    offer = offer_service.get_offer(db=db, offer_id=offer_id)
    if user.role == RoleName.buyer and offer.rfq.buyer_id != user.id:
        raise HTTPException(status_code=404, detail="Offer not found")
    return offer


@router.post("/offers/{offer_id}/publish", response_model=OfferRead)
def publish_offer(
    offer_id: str,
    payload: Optional[OfferAction] = None,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.admin)),
):
    return offer_service.publish_offer(
        db=db,
        offer_id=offer_id,
        actor_id=user.id,
        expected_version=payload.expected_version if payload else None,
    )


@router.post("/offers/{offer_id}/accept", response_model=OrderRead)
def accept_offer(
    offer_id: str,
    payload: Optional[OfferAction] = None,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.buyer)),
):
    return order_lifecycle.accept_offer(
        db=db,
        offer_id=offer_id,
        buyer_id=None if user.role == RoleName.admin else user.id,
        expected_version=payload.expected_version if payload else None,
    )


@router.post("/offers/{offer_id}/withdraw", response_model=OfferRead)
def withdraw_offer(
    offer_id: str,
    payload: Optional[OfferAction] = None,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.admin)),
):
    return offer_service.withdraw_offer(
        db=db,
        offer_id=offer_id,
        actor_id=user.id,
        expected_version=payload.expected_version if payload else None,
    )
