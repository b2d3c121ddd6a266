"""
Exceptions for the workflow engine.

Every failure raised by a service is a WorkflowError with a stable code,
a human-readable message and a details dict for programmatic handling.

Usage:
    try:
        ticket_service.transition(ticket_id, TicketState.DELIVERED, org_id=org_id)
    except PaymentIncomplete as e:
        print(e.details["total_owed_cents"] - e.details["total_paid_cents"])
"""

from typing import Any


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""

    code = "WORKFLOW_ERROR"
    default_message = "Workflow operation failed"

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self) -> dict[str, Any]:
        """Serialize to dict (useful for APIs)."""
        return {
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }


class NotFound(WorkflowError):
    """Entity missing or outside the caller's organization/branch scope."""

    code = "NOT_FOUND"
    default_message = "Not found"


class ValidationFailed(WorkflowError):
    code = "VALIDATION_FAILED"
    default_message = "Invalid input"


class InvalidTransition(WorkflowError):
    code = "INVALID_TRANSITION"
    default_message = "State transition not allowed"


class InsufficientStock(WorkflowError):
    code = "INSUFFICIENT_STOCK"
    default_message = "Insufficient stock"

    @property
    def available(self) -> int:
        return self.details.get("available", 0)

    @property
    def requested(self) -> int:
        return self.details.get("requested", 0)


class PaymentIncomplete(WorkflowError):
    code = "PAYMENT_INCOMPLETE"
    default_message = "Payment incomplete"


class PaymentExceedsBalance(WorkflowError):
    code = "PAYMENT_EXCEEDS_BALANCE"
    default_message = "Payment amount exceeds remaining balance"


class SequenceGenerationFailed(WorkflowError):
    code = "SEQUENCE_GENERATION_FAILED"
    default_message = "Failed to generate folio after retries"


class ConcurrencyConflict(WorkflowError):
    """A concurrent writer invalidated a read-then-write check."""

    code = "CONCURRENCY_CONFLICT"
    default_message = "Concurrent modification detected"


class DuplicateCashCut(WorkflowError):
    code = "DUPLICATE_CASH_CUT"
    default_message = "A cash cut already exists for this register and date"
