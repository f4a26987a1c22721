"""Error kinds raised by the inventory, ordering and payments contexts.

All of them are protean exceptions: rule violations are
``ValidationError``, missing records ``ObjectNotFoundError`` and work on
something that already left its mutable state ``InvalidOperationError``.
Each kind adds a stable ``code`` for HTTP responses and logs, plus keyword
``context`` (ids, amounts) for whoever handles it.
"""

from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ProteanException
from protean.exceptions import ValidationError as ProteanValidationError


class DomainError(ProteanException):
    """Base class for all business-rule violations."""

    code = "domain_error"

    def __init__(self, messages: dict[str, list[str]] | str, **context):
        if isinstance(messages, str):
            messages = {"_entity": [messages]}
        self.context = context
        super().__init__(messages)
        self.messages = messages


class ValidationError(DomainError, ProteanValidationError):
    code = "validation_error"


class NotFound(DomainError, ObjectNotFoundError):
    code = "not_found"


class ProductNotFound(NotFound):
    code = "product_not_found"


class ReservationNotFound(NotFound):
    code = "reservation_not_found"


class CartNotFound(NotFound):
    code = "cart_not_found"


class OrderNotFound(NotFound):
    code = "order_not_found"


class PaymentNotFound(NotFound):
    code = "payment_not_found"


class InsufficientStock(DomainError, ProteanValidationError):
    code = "insufficient_stock"


class AlreadyTerminal(DomainError, InvalidOperationError):
    """The reservation (or order) already left its mutable state."""

    code = "already_terminal"


class ReservationExpired(AlreadyTerminal):
    code = "reservation_expired"


class InvalidTransition(DomainError, ProteanValidationError):
    code = "invalid_transition"


class PartialCartInvalid(DomainError, ProteanValidationError):
    code = "partial_cart_invalid"


class PaymentMismatch(DomainError, ProteanValidationError):
    code = "payment_mismatch"


class OptimisticConflict(DomainError):
    """Concurrent writers collided on the same rows. Safe to retry."""

    code = "optimistic_conflict"


class PaymentGatewayError(DomainError):
    code = "payment_gateway_error"


class DuplicateWebhookEvent(DomainError, InvalidOperationError):
    code = "duplicate_webhook_event"
