# ruff: noqa: B008

import hashlib
import hmac
import logging
import time

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from orderflow.api.deps import CurrentUser, get_db, require_roles
from orderflow.config import settings
from orderflow.models import RoleName, TransactionSource
from orderflow.schemas.payments import (
    GatewayWebhookEvent,
    PaymentTransactionRead,
    SettlementCreate,
)
from orderflow.services.payment_reconciliation import TransactionEvent, record_transaction

router = APIRouter(prefix="/payments", tags=["payments"])

logger = logging.getLogger("orderflow.payments.webhook")

SIGNATURE_HEADER = "x-signature"
TIMESTAMP_HEADER = "x-request-timestamp"


def _valid_signature(
    raw_body: bytes, signature_header: str | None, timestamp_header: str | None
) -> bool:
    """HMAC-SHA256 over "<timestamp>.<body>" (or the bare body without a timestamp)."""

    if not settings.payment_webhook_secret:
        return True
    if not signature_header:
        return False
    try:
        ts = int(timestamp_header) if timestamp_header else None
    except ValueError:
        return False

    if ts is not None:
        now = int(time.time())
        if abs(now - ts) > settings.webhook_max_skew_seconds:
            return False

    signed = raw_body if ts is None else f"{ts}.".encode() + raw_body
    secret = settings.payment_webhook_secret.encode()
    expected = hmac.new(secret, signed, hashlib.sha256).hexdigest()
    provided = signature_header.split("=", 1)[-1].strip()
    return hmac.compare_digest(expected, provided)


@router.post("/webhook", response_model=PaymentTransactionRead, status_code=status.HTTP_200_OK)
async def payment_gateway_webhook(
    payload: GatewayWebhookEvent,
    request: Request,
    db: Session = Depends(get_db),
    x_signature: str | None = Header(default=None, alias=SIGNATURE_HEADER),
    x_request_timestamp: str | None = Header(default=None, alias=TIMESTAMP_HEADER),
):
    raw_body = await request.body()
    if not _valid_signature(raw_body, x_signature, x_request_timestamp):
        logger.warning(
            "payment_webhook_rejected",
            extra={"transaction_ref": payload.transaction_ref, "reason": "invalid_signature"},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature"
        )

    event = TransactionEvent(
        transaction_ref=payload.transaction_ref,
        order_id=payload.order_id,
        curated_offer_id=payload.curated_offer_id,
        amount=payload.amount,
        fees=payload.fees,
        currency=payload.currency,
        status=payload.status,
        transaction_type=payload.transaction_type,
        source=TransactionSource.gateway,
        gateway_payload=payload.payload,
        failure_reason=payload.failure_reason,
    )
    # Synchronous session work runs in the threadpool.
    return await run_in_threadpool(record_transaction, db=db, event=event)


@router.post("/settlements", response_model=PaymentTransactionRead)
def record_settlement(
    payload: SettlementCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_roles(RoleName.admin)),
):
    event = TransactionEvent(
        transaction_ref=payload.transaction_ref,
        order_id=payload.order_id,
        curated_offer_id=payload.curated_offer_id,
        amount=payload.amount,
        fees=payload.fees,
        currency=payload.currency,
        status=payload.status,
        transaction_type=payload.transaction_type,
        source=TransactionSource.admin,
        gateway_payload={"notes": payload.notes} if payload.notes else None,
        failure_reason=payload.failure_reason,
        actor_id=user.id,
    )
    return record_transaction(db=db, event=event)
