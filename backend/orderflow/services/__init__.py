from orderflow.services import (
    earlypay,
    notifications,
    order_lifecycle,
    payment_reconciliation,
    suppliers,
)
from orderflow.services.audit import audit_event
from orderflow.services.earlypay import submit_early_pay_request
from orderflow.services.notifications import get_unread_count, mark_all_read, mark_notification_read
from orderflow.services.order_lifecycle import accept_offer, append_production_update
from orderflow.services.payment_reconciliation import (
    get_order_balance,
    get_payment_status,
    record_payment_transaction,
    record_transaction,
)
from orderflow.services.rfq_lifecycle import submit_rfq, transition_rfq_status
from orderflow.services.suppliers import set_supplier_verification

__all__ = [
    "accept_offer",
    "append_production_update",
    "audit_event",
    "earlypay",
    "get_order_balance",
    "get_payment_status",
    "get_unread_count",
    "mark_all_read",
    "mark_notification_read",
    "notifications",
    "order_lifecycle",
    "payment_reconciliation",
    "record_payment_transaction",
    "record_transaction",
    "set_supplier_verification",
    "submit_early_pay_request",
    "submit_rfq",
    "suppliers",
    "transition_rfq_status",
]
