"""
StorePilot — Order Transition Guard

Explicit state machine for the order lifecycle. Every requested
status change is checked against VALID_TRANSITIONS; cancellations get
extra checks against payment and fulfillment state.

Usage:
    result = validate_status_transition("pending", "shipped")
    result.allowed     # True

    result = validate_order_cancellation("shipped")
    result.risk_flag   # "CANNOT_CANCEL_SHIPPED"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    ON_HOLD = "on_hold"
    SHIPPED = "shipped"
    PARTIALLY_SHIPPED = "partially_shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


# Valid transitions: {from_state: [valid_to_states]}
VALID_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["confirmed", "processing", "shipped", "cancelled"],
    "confirmed": ["processing", "shipped", "cancelled"],
    "processing": ["on_hold", "shipped", "cancelled"],
    "on_hold": ["processing", "shipped", "cancelled"],
    "shipped": ["partially_shipped", "delivered"],
    "partially_shipped": ["shipped", "delivered"],
    "delivered": ["completed"],
    "completed": [],  # Terminal
    "cancelled": [],  # Terminal
    "refunded": [],  # Terminal
    "partially_refunded": ["refunded"],
}

TERMINAL_STATUSES = frozenset({"completed", "cancelled", "refunded"})
_NOT_CANCELLABLE = frozenset({"shipped", "delivered", "completed"})


@dataclass
class TransitionResult:
    valid: bool
    allowed: bool
    errors: list[str] = field(default_factory=list)
    risk_flag: str | None = None
    message: str | None = None


def _status(value) -> str:
    return value.value if isinstance(value, OrderStatus) else str(value)


def validate_status_transition(current: str, requested: str) -> TransitionResult:
    """
    Check one status change. The first error becomes the message;
    any error sets risk flag INVALID_TRANSITION.
    """
    current, requested = _status(current), _status(requested)
    errors: list[str] = []

    allowed_next = VALID_TRANSITIONS.get(current, [])
    is_allowed = requested in allowed_next
    if not is_allowed:
        errors.append(
            f"Invalid status transition: {current} → {requested}. "
            f"Valid transitions from {current}: {', '.join(allowed_next) or 'none'}"
        )

    if requested == "cancelled" and current in _NOT_CANCELLABLE:
        errors.append(
            f"Cannot cancel order. Order has already been {current} and cannot be cancelled."
        )

    if requested == "cancelled" and current == "cancelled":
        errors.append("Order is already cancelled")

    if current in TERMINAL_STATUSES and current != requested:
        errors.append(f"Cannot change status from terminal state: {current}")

    return TransitionResult(
        valid=not errors,
        allowed=is_allowed and not errors,
        errors=errors,
        risk_flag="INVALID_TRANSITION" if errors else None,
        message=errors[0] if errors else None,
    )


def validate_order_cancellation(
    current: str,
    payment_status: str | None = None,
    fulfillment_status: str | None = None,
) -> TransitionResult:
    """
    Hard violations (illegal transition) flag CANNOT_CANCEL_SHIPPED.
    Paid or fulfilled orders are soft violations flagged
    CANCELLATION_REQUIRES_REFUND.
    """
    base = validate_status_transition(current, "cancelled")
    if not base.allowed:
        return TransitionResult(
            valid=False,
            allowed=False,
            errors=base.errors,
            risk_flag="CANNOT_CANCEL_SHIPPED",
            message=base.message,
        )

    errors: list[str] = []
    if payment_status in ("paid", "authorized"):
        errors.append("Order has been paid. Cancellation may require refund processing.")
    if fulfillment_status in ("fulfilled", "partially_fulfilled"):
        errors.append("Order has been fulfilled. Cannot cancel fulfilled orders.")

    return TransitionResult(
        valid=not errors,
        allowed=not errors,
        errors=errors,
        risk_flag="CANCELLATION_REQUIRES_REFUND" if errors else None,
        message=errors[0] if errors else None,
    )


def validate_status_with_payment(current: str, requested: str, payment_status: str) -> TransitionResult:
    """Transition check plus payment/shipping preconditions."""
    current, requested = _status(current), _status(requested)
    errors: list[str] = []

    if requested == "shipped" and payment_status not in ("paid", "authorized"):
        errors.append("Cannot ship order that has not been paid")
    if requested == "delivered" and current not in ("shipped", "partially_shipped"):
        errors.append("Cannot mark order as delivered if it has not been shipped")

    base = validate_status_transition(current, requested)
    return TransitionResult(
        valid=base.valid and not errors,
        allowed=base.allowed and not errors,
        errors=base.errors + errors,
        risk_flag="INVALID_STATUS_WITH_PAYMENT" if errors else base.risk_flag,
        message=errors[0] if errors else base.message,
    )


def transition_error_message(order_number: str, current: str, requested: str) -> str:
    """Operator-facing message; empty when the transition is valid."""
    current, requested = _status(current), _status(requested)
    if validate_status_transition(current, requested).valid:
        return ""
    if requested == "cancelled" and current in ("shipped", "delivered"):
        return (
            f"Cannot cancel order {order_number}. "
            f"This order has already been {current} and cannot be cancelled."
        )
    return (
        f"Invalid status transition for order {order_number}. "
        f"Cannot change from {current} to {requested}."
    )
