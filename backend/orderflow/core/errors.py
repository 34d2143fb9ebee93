"""
Domain error taxonomy.

Services raise these; the API layer maps each one to an HTTP status and a
stable ``code`` string via ``domain_error_handler``. Nothing in the service
layer raises ``HTTPException`` directly.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    status_code: int = 400
    code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = resource
        if resource_id is not None:
            msg += f" id={resource_id}"
        super().__init__(f"{msg} not found", {"resource": resource, "id": resource_id})


class ValidationError(DomainError):
    """Well-formed input that violates a business rule (negative amount, bad range...)."""

    status_code = 422
    code = "VALIDATION_ERROR"


class InvalidTransition(DomainError):
    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_status: Any, to_status: Any, reason: str | None = None):
        self.entity = entity
        self.from_status = _status_str(from_status)
        self.to_status = _status_str(to_status)
        msg = f"{entity} cannot move from {self.from_status} to {self.to_status}"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            {"entity": entity, "from": self.from_status, "to": self.to_status, "reason": reason},
        )


class ConcurrentModification(DomainError):
    """The entity changed since it was read. Re-read and re-apply."""

    status_code = 409
    code = "CONCURRENT_MODIFICATION"

    def __init__(self, entity: str, entity_id: Any, expected_version: int | None = None):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity} id={entity_id} was modified concurrently",
            {"entity": entity, "id": entity_id, "expected_version": expected_version},
        )


class ImmutableTransaction(DomainError):
    status_code = 409
    code = "IMMUTABLE_TRANSACTION"

    def __init__(self, transaction_ref: str, status: Any, attempted: Any):
        self.transaction_ref = transaction_ref
        super().__init__(
            f"Transaction {transaction_ref} is {_status_str(status)} and cannot become "
            f"{_status_str(attempted)}",
            {"transaction_ref": transaction_ref, "status": _status_str(status)},
        )


class CurrencyMismatch(DomainError):
    status_code = 422
    code = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Currency {received} does not match {expected}",
            {"expected": expected, "received": received},
        )


class IneligibleEarlyPay(DomainError):
    status_code = 422
    code = "INELIGIBLE_EARLY_PAY"

    def __init__(self, precondition: str, message: str | None = None):
        self.precondition = precondition
        super().__init__(
            message or f"EarlyPay precondition failed: {precondition}",
            {"precondition": precondition},
        )


def _status_str(status: Any) -> str:
    if hasattr(status, "value"):
        return str(status.value)
    return str(status)
