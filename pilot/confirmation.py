"""
StorePilot — Confirmation State

Builds the PendingAction snapshot for a paused workflow and
recognizes the human's reply.

A reply confirms when it contains the token "confirm"
(case-insensitive) plus the pending entity's key identifier:
the SKU or the requested price for price changes, the order number
for order intents. Other intents accept "confirm" alone.
"""

from __future__ import annotations

import re
import time
from typing import Any

from pilot.state import ORDER_INTENTS, Intent, PendingAction, Plan, PolicyDecision, ValidationResult

REJECTION_WORDS = ("cancel", "no", "reject", "abort")


def create_confirmation_state(
    plan: Plan,
    validation: ValidationResult,
    decision: PolicyDecision,
    ttl_seconds: float | None = None,
    now: float | None = None,
) -> PendingAction:
    now = time.time() if now is None else now
    return PendingAction(
        intent=plan.intent,
        entity=dict(plan.entities),
        risk_flag=decision.risk_flag or validation.risk_flag,
        original_value=decision.original_value if decision.original_value is not None else validation.old_value,
        requested_value=decision.requested_value if decision.requested_value is not None else validation.new_value,
        timestamp=now,
        expires_at=(now + ttl_seconds) if ttl_seconds else None,
        reason=decision.reason,
        confirmation_phrase=decision.confirmation_phrase,
        message=decision.message,
    )


def _price_strings(value: Any) -> list[str]:
    """Textual forms a user might type for a price: 49.99, 49.990, 50, 50.00."""
    if value is None or value == "":
        return []
    forms = {str(value)}
    try:
        f = float(value)
    except (TypeError, ValueError):
        return sorted(forms)
    forms.add(f"{f:.2f}")
    if f.is_integer():
        forms.add(str(int(f)))
    return sorted(forms)


def _mentions(text: str, token: str) -> bool:
    """Whole-token match: "49.99" is not mentioned by "149.99", nor "100" by "1002"."""
    return bool(token) and re.search(rf"(?<![\w.]){re.escape(token)}(?!\w|\.\d)", text) is not None


def is_confirmation_command(message: str, pending: PendingAction) -> bool:
    text = (message or "").lower().strip()
    if "confirm" not in text:
        return False

    entity = pending.entity or {}
    if pending.intent == Intent.UPDATE_PRODUCT_PRICE.value:
        sku = str(entity.get("sku") or "").lower()
        if _mentions(text, sku):
            return True
        return any(_mentions(text, p) for p in _price_strings(entity.get("newPrice")))

    if pending.intent in ORDER_INTENTS:
        order_number = str(entity.get("orderNumber") or "").lower()
        return _mentions(text, order_number)

    return True


def is_rejection_command(message: str) -> bool:
    words = re.findall(r"[a-z]+", (message or "").lower())
    return any(w in REJECTION_WORDS for w in words) and "confirm" not in words


def is_expired(pending: PendingAction, now: float | None = None) -> bool:
    if pending.expires_at is None:
        return False
    now = time.time() if now is None else now
    return now >= pending.expires_at
