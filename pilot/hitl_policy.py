"""
StorePilot — HITL Policy Engine

Decides whether a validated plan may PROCEED or must pause for an
explicit human CONFIRM. Checks run in a fixed priority order and the
first positive match wins, so exactly one reason is surfaced per turn:

  1. confidence below threshold          → LOW_CONFIDENCE
  2. required entities missing/ambiguous → INCOMPLETE_ENTITIES
  3. price update deviating > threshold  → PRICE_OUTLIER
  4. high-risk intent or risk score high → HIGH_RISK_OPERATION
  5. otherwise                           → PROCEED

Thresholds and the high-risk intent set come from PolicySettings.

Usage:
    engine = PolicyEngine(settings.policy)
    decision = engine.evaluate_state(state)
    decision.outcome    # PolicyOutcome.CONFIRM
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pilot.config import PolicySettings
from pilot.price_guard import confirmation_phrase, price_confirmation_message, price_deviation
from pilot.state import Intent, PolicyDecision, PolicyOutcome, WorkflowState

logger = logging.getLogger("storepilot.hitl_policy")


# Required entities per intent, used for the completeness check
REQUIRED_ENTITIES: dict[str, list[str]] = {
    Intent.UPDATE_PRODUCT_PRICE.value: ["sku", "newPrice"],
    Intent.UPDATE_PRODUCT_DESCRIPTION.value: ["sku", "description"],
    Intent.UPDATE_PRODUCT_NAME.value: ["sku", "newName"],
    Intent.UPDATE_PRODUCT_STATUS.value: ["sku", "newStatus"],
    Intent.UPDATE_PRODUCT_TAGS.value: ["sku", "tags"],
    Intent.UPDATE_VARIANT_COMPARE_AT_PRICE.value: ["sku", "compareAtPrice"],
    Intent.UPDATE_VARIANT_COST_PRICE.value: ["sku", "costPrice"],
    Intent.ARCHIVE_PRODUCT.value: ["sku"],
    Intent.UNARCHIVE_PRODUCT.value: ["sku"],
    Intent.CANCEL_ORDER.value: ["orderNumber"],
    Intent.UPDATE_ORDER_STATUS.value: ["orderNumber", "status"],
    Intent.ADD_ORDER_NOTE.value: ["orderNumber", "content"],
    Intent.UPDATE_ORDER_SHIPPING_ADDRESS.value: ["orderNumber", "shippingAddress"],
    Intent.UPDATE_ORDER_BILLING_ADDRESS.value: ["orderNumber", "billingAddress"],
    Intent.ARCHIVE_ORDER.value: ["orderNumber"],
    Intent.UNARCHIVE_ORDER.value: ["orderNumber"],
}


@dataclass
class PriceChange:
    old_price: float
    new_price: float
    sku: str


@dataclass
class EntityCompleteness:
    required: list[str]
    extracted: dict[str, Any] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════
# Individual checks (each returns a CONFIRM decision or None)
# ═══════════════════════════════════════════════════════════════════

def check_confidence(confidence: float, threshold: float) -> PolicyDecision | None:
    if confidence >= threshold:
        return None
    return PolicyDecision(
        outcome=PolicyOutcome.CONFIRM,
        risk_flag="LOW_CONFIDENCE",
        reason=(
            f"Intent confidence ({confidence * 100:.1f}%) is below threshold "
            f"({threshold * 100:.0f}%)"
        ),
        message=f"Low confidence detected ({confidence * 100:.1f}%). Please confirm your intent.",
    )


def check_entity_completeness(completeness: EntityCompleteness) -> PolicyDecision | None:
    missing, ambiguous = [], []
    for name in completeness.required:
        value = completeness.extracted.get(name)
        if value is None or value == "":
            missing.append(name)
        elif isinstance(value, str) and value.strip().lower() == "ambiguous":
            ambiguous.append(name)
    if not missing and not ambiguous:
        return None

    parts = []
    if missing:
        parts.append(f"Missing entities: {', '.join(missing)}.")
    if ambiguous:
        parts.append(f"Ambiguous entities: {', '.join(ambiguous)}.")
    reason = " ".join(parts)
    return PolicyDecision(
        outcome=PolicyOutcome.CONFIRM,
        risk_flag="INCOMPLETE_ENTITIES",
        reason=reason,
        message=f"Unable to extract all required information. {reason} Please provide more details.",
    )


def check_price_change(change: PriceChange, threshold: float) -> PolicyDecision | None:
    deviation = price_deviation(change.old_price, change.new_price)
    if deviation <= threshold:
        return None
    return PolicyDecision(
        outcome=PolicyOutcome.CONFIRM,
        risk_flag="PRICE_OUTLIER",
        reason=f"Price deviation ({deviation:.2f}%) exceeds threshold ({threshold:g}%)",
        message=price_confirmation_message(change.sku, change.old_price, change.new_price, deviation),
        original_value=change.old_price,
        requested_value=change.new_price,
        confirmation_phrase=confirmation_phrase(change.sku, change.new_price),
    )


def check_high_risk(
    intent: str,
    risk_score: float | None,
    high_risk_intents: list[str] | frozenset[str],
    risk_score_threshold: float,
) -> PolicyDecision | None:
    is_high_risk = intent in high_risk_intents
    score_high = risk_score is not None and risk_score > risk_score_threshold
    if not (is_high_risk or score_high):
        return None
    if is_high_risk:
        reason = f"Operation {intent} is classified as high-risk"
    else:
        reason = f"Risk score ({risk_score}) exceeds threshold ({risk_score_threshold})"
    return PolicyDecision(
        outcome=PolicyOutcome.CONFIRM,
        risk_flag="HIGH_RISK_OPERATION",
        reason=reason,
        message="This is a high-risk operation. Please confirm before proceeding.",
    )


# ═══════════════════════════════════════════════════════════════════
# Combined evaluation
# ═══════════════════════════════════════════════════════════════════

def evaluate_policy(
    intent: str,
    confidence: float,
    risk_flag: str | None = None,
    risk_score: float | None = None,
    price_change: PriceChange | None = None,
    entity_completeness: EntityCompleteness | None = None,
    settings: PolicySettings | None = None,
) -> PolicyDecision:
    """First matching check wins. risk_flag is carried onto a PROCEED decision."""
    settings = settings or PolicySettings()

    decision = check_confidence(confidence, settings.confidence_threshold)
    if decision is None and entity_completeness is not None:
        decision = check_entity_completeness(entity_completeness)
    if decision is None and price_change is not None and intent == Intent.UPDATE_PRODUCT_PRICE.value:
        decision = check_price_change(price_change, settings.price_deviation_percent)
    if decision is None:
        decision = check_high_risk(
            intent, risk_score, settings.high_risk_intents, settings.risk_score_threshold,
        )
    if decision is None:
        decision = PolicyDecision(outcome=PolicyOutcome.PROCEED, risk_flag=risk_flag)
    return decision


class PolicyEngine:
    """Builds policy inputs from a workflow's Plan and ValidationResult."""

    def __init__(self, settings: PolicySettings | None = None):
        self.settings = settings or PolicySettings()

    def evaluate(self, intent: str, confidence: float, **kwargs) -> PolicyDecision:
        return evaluate_policy(intent, confidence, settings=self.settings, **kwargs)

    def evaluate_state(self, state: WorkflowState, risk_score: float | None = None) -> PolicyDecision:
        if state.plan is None or state.validation is None:
            raise ValueError("Policy needs both a plan and a validation result")

        plan, validation = state.plan, state.validation
        price_change = None
        if (
            plan.intent == Intent.UPDATE_PRODUCT_PRICE.value
            and isinstance(validation.old_value, (int, float))
            and isinstance(validation.new_value, (int, float))
        ):
            price_change = PriceChange(
                old_price=validation.old_value,
                new_price=validation.new_value,
                sku=str(plan.entities.get("sku", "")),
            )

        required = REQUIRED_ENTITIES.get(plan.intent)
        completeness = EntityCompleteness(required, plan.entities) if required else None

        decision = self.evaluate(
            plan.intent,
            plan.confidence,
            risk_flag=validation.risk_flag,
            risk_score=risk_score,
            price_change=price_change,
            entity_completeness=completeness,
        )

        # Before/after values always travel with a price confirmation
        if decision.requires_confirmation and decision.original_value is None:
            decision.original_value = validation.old_value
            decision.requested_value = validation.new_value
            if price_change is not None and decision.confirmation_phrase is None:
                decision.confirmation_phrase = confirmation_phrase(price_change.sku, price_change.new_price)

        logger.debug("Policy for %s: %s (%s)", plan.intent, decision.outcome.value, decision.risk_flag)
        return decision
