"""Lifecycle graphs for RFQs, orders, payment transactions and EarlyPay requests.

Each graph maps a status to the set of statuses reachable in one step.
Re-entering the current status is never an edge here: callers treat it as a
no-op before consulting the graph.
"""

from __future__ import annotations

from typing import Mapping, TypeVar

from orderflow.core.errors import InvalidTransition
from orderflow.models.domain import (
    EarlyPayStatus,
    OrderStatus,
    RfqStatus,
    TransactionStatus,
)

S = TypeVar("S")

_RFQ_MAIN_LINE = [
    RfqStatus.draft,
    RfqStatus.submitted,
    RfqStatus.under_review,
    RfqStatus.invited,
    RfqStatus.offers_published,
    RfqStatus.accepted,
    RfqStatus.in_production,
    RfqStatus.inspection,
    RfqStatus.shipped,
    RfqStatus.delivered,
    RfqStatus.closed,
]

RFQ_TERMINAL: frozenset[RfqStatus] = frozenset({RfqStatus.closed, RfqStatus.cancelled})


def _linear_graph(line, cancel_state, cancellable) -> dict:
    graph: dict = {}
    for i, status in enumerate(line):
        nxt = {line[i + 1]} if i + 1 < len(line) else set()
        if status in cancellable:
            nxt.add(cancel_state)
        graph[status] = frozenset(nxt)
    graph[cancel_state] = frozenset()
    return graph


RFQ_TRANSITIONS: dict[RfqStatus, frozenset[RfqStatus]] = _linear_graph(
    _RFQ_MAIN_LINE,
    RfqStatus.cancelled,
    cancellable=set(_RFQ_MAIN_LINE) - RFQ_TERMINAL,
)

_ORDER_MAIN_LINE = [
    OrderStatus.created,
    OrderStatus.deposit_paid,
    OrderStatus.production,
    OrderStatus.inspection,
    OrderStatus.shipped,
    OrderStatus.delivered,
    OrderStatus.closed,
]

ORDER_TERMINAL: frozenset[OrderStatus] = frozenset({OrderStatus.closed, OrderStatus.cancelled})

# Cancellation is only possible before delivery.
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = _linear_graph(
    _ORDER_MAIN_LINE,
    OrderStatus.cancelled,
    cancellable={
        OrderStatus.created,
        OrderStatus.deposit_paid,
        OrderStatus.production,
        OrderStatus.inspection,
        OrderStatus.shipped,
    },
)

# Order moves that carry the parent RFQ along.
ORDER_TO_RFQ_STATUS: dict[OrderStatus, RfqStatus] = {
    OrderStatus.production: RfqStatus.in_production,
    OrderStatus.inspection: RfqStatus.inspection,
    OrderStatus.shipped: RfqStatus.shipped,
    OrderStatus.delivered: RfqStatus.delivered,
    OrderStatus.closed: RfqStatus.closed,
    OrderStatus.cancelled: RfqStatus.cancelled,
}

# RFQ statuses an order move drives; the RFQ only reaches them through its order.
RFQ_TO_ORDER_STATUS: dict[RfqStatus, OrderStatus] = {
    rfq_status: order_status
    for order_status, rfq_status in ORDER_TO_RFQ_STATUS.items()
    if rfq_status != RfqStatus.cancelled
}

TRANSACTION_TERMINAL: frozenset[TransactionStatus] = frozenset(
    {
        TransactionStatus.completed,
        TransactionStatus.failed,
        TransactionStatus.cancelled,
        TransactionStatus.refunded,
    }
)

# Settled money: the record is frozen.
TRANSACTION_IMMUTABLE: frozenset[TransactionStatus] = frozenset(
    {TransactionStatus.completed, TransactionStatus.refunded}
)

# Forward skips are allowed: gateways may report `completed` without `processing`.
TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.pending: frozenset(
        {
            TransactionStatus.processing,
            TransactionStatus.completed,
            TransactionStatus.failed,
            TransactionStatus.cancelled,
        }
    ),
    TransactionStatus.processing: frozenset(
        {TransactionStatus.completed, TransactionStatus.failed, TransactionStatus.cancelled}
    ),
    TransactionStatus.completed: frozenset(),
    TransactionStatus.failed: frozenset(),
    TransactionStatus.cancelled: frozenset(),
    TransactionStatus.refunded: frozenset(),
}

_TRANSACTION_RANK: dict[TransactionStatus, int] = {
    TransactionStatus.pending: 0,
    TransactionStatus.processing: 1,
}

EARLY_PAY_TRANSITIONS: dict[EarlyPayStatus, frozenset[EarlyPayStatus]] = {
    EarlyPayStatus.submitted: frozenset({EarlyPayStatus.approved, EarlyPayStatus.rejected}),
    EarlyPayStatus.approved: frozenset({EarlyPayStatus.paid, EarlyPayStatus.rejected}),
    EarlyPayStatus.paid: frozenset(),
    EarlyPayStatus.rejected: frozenset(),
}


def can_transition(graph: Mapping[S, frozenset[S]], current: S, target: S) -> bool:
    return target in graph.get(current, frozenset())


def ensure_transition(
    graph: Mapping[S, frozenset[S]], *, entity: str, current: S, target: S
) -> None:
    if not can_transition(graph, current, target):
        reason = "terminal state" if not graph.get(current) else "not adjacent"
        raise InvalidTransition(entity, current, target, reason)


def predecessors(graph: Mapping[S, frozenset[S]], target: S) -> set[S]:
    """Statuses from which `target` is one step away."""

    return {src for src, targets in graph.items() if target in targets}


def is_stale_transaction_status(current: TransactionStatus, incoming: TransactionStatus) -> bool:
    """True when `incoming` is an older non-terminal status than `current` (late webhook)."""

    if incoming not in _TRANSACTION_RANK or current not in _TRANSACTION_RANK:
        return False
    return _TRANSACTION_RANK[incoming] < _TRANSACTION_RANK[current]
