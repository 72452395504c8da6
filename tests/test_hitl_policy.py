"""
StorePilot — HITL Policy and Confirmation Tests

Tests:
  - check priority order (confidence > completeness > price > high risk)
  - PROCEED carries the validation risk flag
  - evaluate_state fills before/after values and the confirmation phrase
  - PendingAction snapshot and TTL expiry
  - confirmation / rejection reply recognition
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import support  # noqa: F401

from pilot.config import PolicySettings
from pilot.confirmation import (
    create_confirmation_state,
    is_confirmation_command,
    is_expired,
    is_rejection_command,
)
from pilot.hitl_policy import (
    EntityCompleteness,
    PolicyEngine,
    PriceChange,
    check_entity_completeness,
    evaluate_policy,
)
from pilot.state import (
    PendingAction,
    Plan,
    PolicyOutcome,
    ValidationResult,
    WorkflowInput,
    WorkflowState,
)

_OUTLIER = PriceChange(old_price=29.99, new_price=49.99, sku="HP-BLK-001")


class TestPriorityOrder(unittest.TestCase):

    def test_low_confidence_wins_over_outlier(self):
        decision = evaluate_policy("UPDATE_PRODUCT_PRICE", 0.5, price_change=_OUTLIER)
        self.assertEqual(decision.outcome, PolicyOutcome.CONFIRM)
        self.assertEqual(decision.risk_flag, "LOW_CONFIDENCE")
        self.assertIn("50.0%", decision.reason)

    def test_incomplete_before_outlier(self):
        decision = evaluate_policy(
            "UPDATE_PRODUCT_PRICE", 0.9, price_change=_OUTLIER,
            entity_completeness=EntityCompleteness(["sku", "newPrice"], {"sku": "ambiguous", "newPrice": 49.99}),
        )
        self.assertEqual(decision.risk_flag, "INCOMPLETE_ENTITIES")
        self.assertEqual(decision.reason, "Ambiguous entities: sku.")

    def test_outlier_before_high_risk(self):
        decision = evaluate_policy("UPDATE_PRODUCT_PRICE", 0.9, price_change=_OUTLIER)
        self.assertEqual(decision.risk_flag, "PRICE_OUTLIER")
        self.assertEqual(decision.original_value, 29.99)
        self.assertEqual(decision.requested_value, 49.99)
        self.assertEqual(decision.confirmation_phrase, "CONFIRM price change for HP-BLK-001 to $49.99")

    def test_high_risk_intent(self):
        small = PriceChange(old_price=29.99, new_price=32.0, sku="HP-BLK-001")
        decision = evaluate_policy("UPDATE_PRODUCT_PRICE", 0.9, price_change=small)
        self.assertEqual(decision.risk_flag, "HIGH_RISK_OPERATION")
        self.assertEqual(decision.reason, "Operation UPDATE_PRODUCT_PRICE is classified as high-risk")

    def test_high_risk_score(self):
        decision = evaluate_policy("UPDATE_PRODUCT_NAME", 0.9, risk_score=0.8)
        self.assertEqual(decision.risk_flag, "HIGH_RISK_OPERATION")
        self.assertIn("Risk score", decision.reason)

    def test_proceed_keeps_risk_flag(self):
        decision = evaluate_policy("CANCEL_ORDER", 0.9, risk_flag="SOMETHING")
        self.assertEqual(decision.outcome, PolicyOutcome.PROCEED)
        self.assertEqual(decision.risk_flag, "SOMETHING")
        self.assertFalse(decision.requires_confirmation)

    def test_threshold_boundaries(self):
        self.assertEqual(evaluate_policy("ADD_ORDER_NOTE", 0.75).outcome, PolicyOutcome.PROCEED)
        at_threshold = PriceChange(old_price=100.0, new_price=140.0, sku="X")
        settings = PolicySettings(high_risk_intents=[])
        decision = evaluate_policy("UPDATE_PRODUCT_PRICE", 0.9, price_change=at_threshold, settings=settings)
        self.assertEqual(decision.outcome, PolicyOutcome.PROCEED)

    def test_missing_entities_message(self):
        decision = check_entity_completeness(EntityCompleteness(["orderNumber", "status"], {"status": ""}))
        self.assertEqual(decision.reason, "Missing entities: orderNumber, status.")
        self.assertTrue(decision.message.startswith("Unable to extract all required information."))


class TestPolicyEngine(unittest.TestCase):

    def _state(self, plan, validation):
        state = WorkflowState(input=WorkflowInput("msg", "s1", "t1", "wf_test"))
        state.plan = plan
        state.validation = validation
        return state

    def test_low_confidence_still_carries_price_values(self):
        plan = Plan("UPDATE_PRODUCT_PRICE", {"sku": "HP-BLK-001", "newPrice": 49.99}, 0.5)
        validation = ValidationResult(old_value=29.99, new_value=49.99, risk_flag="PRICE_OUTLIER")
        decision = PolicyEngine().evaluate_state(self._state(plan, validation))
        self.assertEqual(decision.risk_flag, "LOW_CONFIDENCE")
        self.assertEqual((decision.original_value, decision.requested_value), (29.99, 49.99))
        self.assertEqual(decision.confirmation_phrase, "CONFIRM price change for HP-BLK-001 to $49.99")

    def test_settings_change_threshold(self):
        engine = PolicyEngine(PolicySettings(confidence_threshold=0.95))
        plan = Plan("ADD_ORDER_NOTE", {"orderNumber": "1001", "content": "hi"}, 0.9)
        decision = engine.evaluate_state(self._state(plan, ValidationResult()))
        self.assertEqual(decision.risk_flag, "LOW_CONFIDENCE")

    def test_requires_plan_and_validation(self):
        state = WorkflowState(input=WorkflowInput("msg", "s1", "t1", "wf_test"))
        with self.assertRaises(ValueError):
            PolicyEngine().evaluate_state(state)


class TestConfirmationState(unittest.TestCase):

    def setUp(self):
        self.plan = Plan("UPDATE_PRODUCT_PRICE", {"sku": "HP-BLK-001", "newPrice": 49.99}, 0.9)
        self.validation = ValidationResult(old_value=29.99, new_value=49.99, risk_flag="PRICE_OUTLIER")
        self.decision = evaluate_policy("UPDATE_PRODUCT_PRICE", 0.9, price_change=_OUTLIER)

    def test_snapshot(self):
        pending = create_confirmation_state(self.plan, self.validation, self.decision,
                                            ttl_seconds=60, now=1000.0)
        self.assertEqual(pending.intent, "UPDATE_PRODUCT_PRICE")
        self.assertEqual(pending.entity["sku"], "HP-BLK-001")
        self.assertEqual(pending.risk_flag, "PRICE_OUTLIER")
        self.assertEqual((pending.original_value, pending.requested_value), (29.99, 49.99))
        self.assertEqual(pending.timestamp, 1000.0)
        self.assertEqual(pending.expires_at, 1060.0)
        self.assertTrue(pending.pending)

    def test_snapshot_is_independent_of_plan(self):
        pending = create_confirmation_state(self.plan, self.validation, self.decision)
        pending.entity["sku"] = "other"
        self.assertEqual(self.plan.entities["sku"], "HP-BLK-001")

    def test_expiry(self):
        pending = create_confirmation_state(self.plan, self.validation, self.decision,
                                            ttl_seconds=60, now=1000.0)
        self.assertFalse(is_expired(pending, now=1059.0))
        self.assertTrue(is_expired(pending, now=1060.0))

    def test_no_ttl_never_expires(self):
        pending = create_confirmation_state(self.plan, self.validation, self.decision, ttl_seconds=None)
        self.assertIsNone(pending.expires_at)
        self.assertFalse(is_expired(pending, now=10 ** 12))


class TestReplies(unittest.TestCase):

    def setUp(self):
        self.price = PendingAction("UPDATE_PRODUCT_PRICE", {"sku": "HP-BLK-001", "newPrice": 49.99})
        self.order = PendingAction("CANCEL_ORDER", {"orderNumber": "1001"})
        self.other = PendingAction("ARCHIVE_PRODUCT", {"sku": "TS-ORG-L"})

    def test_full_phrase(self):
        self.assertTrue(is_confirmation_command("CONFIRM price change for HP-BLK-001 to $49.99", self.price))

    def test_confirm_with_price_only(self):
        self.assertTrue(is_confirmation_command("yes confirm 49.99", self.price))

    def test_confirm_without_identifier(self):
        self.assertFalse(is_confirmation_command("confirm", self.price))
        self.assertFalse(is_confirmation_command("HP-BLK-001 49.99", self.price))

    def test_order_needs_number(self):
        self.assertTrue(is_confirmation_command("confirm cancel 1001", self.order))
        self.assertFalse(is_confirmation_command("confirm cancel 1002", self.order))

    def test_identifiers_match_whole_tokens(self):
        self.assertFalse(is_confirmation_command("confirm 149.99", self.price))
        self.assertFalse(is_confirmation_command("confirm 49.995", self.price))
        self.assertFalse(is_confirmation_command("confirm HP-BLK-0010", self.price))
        self.assertTrue(is_confirmation_command("Confirm $49.99.", self.price))
        self.assertFalse(is_confirmation_command("confirm cancel 10011", self.order))
        self.assertTrue(is_confirmation_command("confirm cancel #1001", self.order))

    def test_other_intents_accept_bare_confirm(self):
        self.assertTrue(is_confirmation_command("Confirm", self.other))

    def test_rejections(self):
        for text in ("cancel", "No", "reject that", "ABORT!"):
            self.assertTrue(is_rejection_command(text), text)
        self.assertFalse(is_rejection_command("confirm, no doubt"))
        self.assertFalse(is_rejection_command("nothing to see"))
        self.assertFalse(is_rejection_command(""))


if __name__ == "__main__":
    unittest.main()
