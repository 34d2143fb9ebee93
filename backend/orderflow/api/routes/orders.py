from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from orderflow import models
from orderflow.api.deps import CurrentUser, get_current_user, get_db, require_roles
from orderflow.models import RoleName
from orderflow.schemas.orders import (
    InvoiceApproval,
    OrderBalanceRead,
    OrderRead,
    OrderStatusUpdate,
    PaymentStatusRead,
    ProductionUpdateCreate,
    ProductionUpdateRead,
)
from orderflow.schemas.payments import PaymentTransactionRead
from orderflow.services import order_lifecycle, payment_reconciliation

router = APIRouter(prefix="/orders", tags=["orders"])

_DB_DEP = Depends(get_db)
_USER_DEP = Depends(get_current_user)


def _load_for(db: Session, order_id: str, user: CurrentUser) -> models.Order:
    """Orders are visible to their buyer, their supplier and admins."""

    order = payment_reconciliation.get_order(db=db, order_id=order_id)
    if user.role == RoleName.buyer and order.buyer_id != user.id:
        raise HTTPException(status_code=404, detail="Order not found")
    if user.role == RoleName.supplier and order.supplier_id != user.id:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: str, db: Session = _DB_DEP, user: CurrentUser = _USER_DEP):
    return _load_for(db, order_id, user)


@router.post("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.admin)),
):
    return order_lifecycle.transition_order_status(
        db=db,
        order_id=order_id,
        to_status=payload.status,
        expected_version=payload.expected_version,
        actor_id=user.id,
    )


@router.get("/{order_id}/production-updates", response_model=List[ProductionUpdateRead])
def list_production_updates(order_id: str, db: Session = _DB_DEP, user: CurrentUser = _USER_DEP):
    order = _load_for(db, order_id, user)
    return order_lifecycle.list_production_updates(db=db, order_id=order.id)


@router.post(
    "/{order_id}/production-updates",
    response_model=ProductionUpdateRead,
    status_code=status.HTTP_201_CREATED,
)
def add_production_update(
    order_id: str,
    payload: ProductionUpdateCreate,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.supplier)),
):
    order = _load_for(db, order_id, user)
    return order_lifecycle.append_production_update(
        db=db,
        order_id=order.id,
        stage=payload.stage,
        detail=payload.detail,
        updated_by=user.id,
    )


@router.post("/{order_id}/invoice-approval", response_model=OrderRead)
def approve_invoice(
    order_id: str,
    payload: Optional[InvoiceApproval] = None,
    db: Session = _DB_DEP,
    user: CurrentUser = Depends(require_roles(RoleName.buyer)),
):
    return order_lifecycle.approve_invoice(
        db=db,
        order_id=order_id,
        buyer_id=None if user.role == RoleName.admin else user.id,
        expected_version=payload.expected_version if payload else None,
    )


@router.get("/{order_id}/balance", response_model=OrderBalanceRead)
def get_balance(order_id: str, db: Session = _DB_DEP, user: CurrentUser = _USER_DEP):
    order = _load_for(db, order_id, user)
    return payment_reconciliation.get_order_balance(db=db, order_id=order.id)


@router.get("/{order_id}/payment-status", response_model=PaymentStatusRead)
def get_payment_status(order_id: str, db: Session = _DB_DEP, user: CurrentUser = _USER_DEP):
    order = _load_for(db, order_id, user)
    return PaymentStatusRead(
        order_id=order.id,
        payment_status=payment_reconciliation.get_payment_status(db=db, order_id=order.id),
    )


@router.get("/{order_id}/transactions", response_model=List[PaymentTransactionRead])
def list_transactions(order_id: str, db: Session = _DB_DEP, user: CurrentUser = _USER_DEP):
    order = _load_for(db, order_id, user)
    return payment_reconciliation.list_order_transactions(db=db, order_id=order.id)
