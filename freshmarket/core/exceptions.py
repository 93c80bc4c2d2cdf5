"""
Business exceptions raised by the lifecycle engine and the services around it.
Every error carries a stable machine-readable code next to the human message.
"""

from typing import Optional


class BusinessError(Exception):
    """Base class for rejected business operations."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @classmethod
    def bad_request(cls, message: str) -> "BusinessError":
        return cls("BAD_REQUEST", message)


class IllegalTransitionError(BusinessError):
    """Requested status change is not in the allowed transition table."""

    def __init__(self, entity: str, entity_id, current_status, target_status,
                 message: Optional[str] = None, code: str = "ILLEGAL_TRANSITION"):
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            code,
            message or (f"Cannot change {entity} {entity_id} status from "
                        f"{_name(current_status)} to {_name(target_status)}")
        )


class StaleStateError(IllegalTransitionError):
    """The status observed by the caller is no longer the current status."""

    def __init__(self, entity: str, entity_id, expected_status, current_status, target_status):
        self.expected_status = expected_status
        super().__init__(
            entity, entity_id, current_status, target_status,
            message=(f"{entity.capitalize()} {entity_id} is {_name(current_status)}, "
                     f"expected {_name(expected_status)}; "
                     f"transition to {_name(target_status)} rejected"),
            code="STALE_STATE",
        )


class InvalidStateTransitionError(IllegalTransitionError):
    """A write was attempted against a payment that already reached a final state."""

    def __init__(self, payment_id, current_status, target_status):
        super().__init__(
            "payment", payment_id, current_status, target_status,
            message=(f"Cannot change payment {payment_id} status from final state "
                     f"{_name(current_status)} to {_name(target_status)}"),
            code="PAYMENT_FINAL_STATE",
        )


class UnknownGatewayError(BusinessError, ValueError):
    """A payment gateway code could not be resolved."""

    def __init__(self, code_value):
        self.gateway_code = code_value
        if code_value is None or code_value == "":
            message = "Payment gateway code cannot be empty"
        else:
            message = f"Unknown payment gateway code: {code_value}"
        super().__init__("UNKNOWN_GATEWAY", message)


class ConsistencyViolationError(BusinessError):
    """Order and payment statuses would end up in a forbidden combination."""

    def __init__(self, order_status, payment_status, intended_change, reason: str):
        self.order_status = order_status
        self.payment_status = payment_status
        self.intended_change = intended_change
        super().__init__("CONSISTENCY_VIOLATION", reason)


class ResourceNotFoundError(BusinessError):
    """An order or payment could not be found."""

    def __init__(self, message: str):
        super().__init__("NOT_FOUND", message)


class PaymentProcessingError(BusinessError):
    """Payment could not be created or processed by the given gateway."""

    def __init__(self, gateway: Optional[str], message: str):
        self.gateway = gateway
        super().__init__("PAYMENT_PROCESSING_ERROR", message)


def _name(status) -> str:
    if status is None:
        return "NONE"
    return getattr(status, "name", str(status))
