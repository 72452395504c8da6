"""
StorePilot — Validation Stage

Per-intent deterministic checks that combine entity existence (read
from the record store) with the transition and price guards. The
result is always a ValidationResult value; business-rule failures
never raise. Only a plan without an intent raises StructuralError.

Usage:
    stage = ValidationStage(registry, price_threshold=40.0)
    result = stage.validate(Plan("UPDATE_PRODUCT_PRICE",
                                 {"sku": "HP-BLK-001", "newPrice": 49.99}, 0.9))
    result.risk_flag              # "PRICE_OUTLIER"
    result.requires_confirmation  # True
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from pilot.entity_checks import (
    check_description,
    check_order_exists,
    check_price,
    check_price_vs_cost,
    check_product_active,
    check_sku_exists,
    find_order,
    find_variant,
)
from pilot.errors import StructuralError
from pilot.price_guard import DEFAULT_THRESHOLD_PERCENT, check_price_outlier
from pilot.records import StoreRegistry
from pilot.state import Intent, Plan, ValidationResult, is_read_only
from pilot.transitions import validate_order_cancellation, validate_status_transition

logger = logging.getLogger("storepilot.validate")

# Product intents that only need the SKU to exist
_SKU_ONLY_INTENTS = frozenset({
    Intent.UPDATE_PRODUCT_NAME.value,
    Intent.UPDATE_PRODUCT_STATUS.value,
    Intent.UPDATE_PRODUCT_TAGS.value,
    Intent.UPDATE_VARIANT_COMPARE_AT_PRICE.value,
    Intent.UPDATE_VARIANT_COST_PRICE.value,
    Intent.ARCHIVE_PRODUCT.value,
    Intent.UNARCHIVE_PRODUCT.value,
})

# Order intents that only need the order to exist
_ORDER_ONLY_INTENTS = frozenset({
    Intent.ADD_ORDER_NOTE.value,
    Intent.UPDATE_ORDER_SHIPPING_ADDRESS.value,
    Intent.UPDATE_ORDER_BILLING_ADDRESS.value,
    Intent.ARCHIVE_ORDER.value,
    Intent.UNARCHIVE_ORDER.value,
})


def _as_number(value: Any) -> Any:
    """Accept numeric strings like "49.99" or "$49.99"; leave anything else alone."""
    if isinstance(value, str):
        try:
            return float(value.strip().lstrip("$").replace(",", ""))
        except ValueError:
            return value
    return value


class ValidationStage:
    """Dispatches on intent. Reads the record store, never writes it."""

    def __init__(self, registry: StoreRegistry, price_threshold: float = DEFAULT_THRESHOLD_PERCENT):
        self.registry = registry
        self.price_threshold = price_threshold
        self._handlers: dict[str, Callable[[dict[str, Any], ValidationResult], ValidationResult]] = {
            Intent.UPDATE_PRODUCT_PRICE.value: self._price_update,
            Intent.CANCEL_ORDER.value: self._order_cancellation,
            Intent.UPDATE_ORDER_STATUS.value: self._order_status_update,
            Intent.UPDATE_PRODUCT_DESCRIPTION.value: self._description_update,
        }

    def validate(self, plan: Plan | None) -> ValidationResult:
        if plan is None or not plan.intent:
            raise StructuralError("Invalid plan: intent is required")

        result = ValidationResult()
        if is_read_only(plan.intent):
            return result

        handler = self._handlers.get(plan.intent)
        if handler is not None:
            result = handler(plan.entities, result)
        elif plan.intent in _SKU_ONLY_INTENTS:
            result = self._sku_exists(plan.entities, result)
        elif plan.intent in _ORDER_ONLY_INTENTS:
            result = self._order_exists(plan.entities, result)
        else:
            logger.debug("No validation rules for intent %s; treating as valid", plan.intent)

        if not result.valid:
            logger.info("Validation failed for %s: %s", plan.intent, result.first_error)
        return result

    # ─── Products ───────────────────────────────────────────────────

    def _price_update(self, entities: dict[str, Any], result: ValidationResult) -> ValidationResult:
        sku = entities.get("sku")
        if not sku:
            return result.fail("SKU is required", entity_missing=True)

        products = self.registry.get("products").get_all()
        exists = check_sku_exists(sku, products)
        if not exists.valid:
            return result.fail(exists.errors[0], entity_missing=True, risk_flag=exists.risk_flag)

        new_price = _as_number(entities.get("newPrice"))
        if new_price is None or new_price == "":
            return result.fail("New price is required")

        price_check = check_price(new_price)
        if not price_check.valid:
            return result.fail(price_check.errors[0], risk_flag=price_check.risk_flag)
        result.warnings.extend(price_check.warnings)

        product, variant = find_variant(products, sku)
        active = check_product_active(product)
        if not active.valid:
            return result.fail(active.errors[0], risk_flag=active.risk_flag)

        old_price = variant.get("price") or 0
        outlier = check_price_outlier(old_price, new_price, self.price_threshold)
        result.old_value = old_price
        result.new_value = new_price
        result.deviation_percent = outlier.deviation_percent
        if outlier.is_outlier:
            result.risk_flag = outlier.risk_flag
            result.requires_confirmation = True

        cost = check_price_vs_cost(new_price, variant.get("costPrice"))
        for w in cost.warnings:
            result.errors.append(w)
            result.warnings.append(w)

        return result

    def _description_update(self, entities: dict[str, Any], result: ValidationResult) -> ValidationResult:
        sku = entities.get("sku")
        if not sku:
            return result.fail("SKU is required", entity_missing=True)

        exists = check_sku_exists(sku, self.registry.get("products").get_all())
        if not exists.valid:
            return result.fail(exists.errors[0], entity_missing=True, risk_flag=exists.risk_flag)

        desc = check_description(entities.get("description"))
        if not desc.valid:
            return result.fail(desc.errors[0], risk_flag=desc.risk_flag)
        return result

    def _sku_exists(self, entities: dict[str, Any], result: ValidationResult) -> ValidationResult:
        sku = entities.get("sku")
        if not sku:
            return result.fail("SKU is required", entity_missing=True)
        exists = check_sku_exists(sku, self.registry.get("products").get_all())
        if not exists.valid:
            return result.fail(exists.errors[0], entity_missing=True, risk_flag=exists.risk_flag)
        return result

    # ─── Orders ─────────────────────────────────────────────────────

    def _lookup_order(self, entities: dict[str, Any], result: ValidationResult) -> dict | None:
        order_number = entities.get("orderNumber")
        if not order_number:
            result.fail("Order number is required", entity_missing=True)
            return None
        orders = self.registry.get("orders").get_all()
        exists = check_order_exists(order_number, orders)
        if not exists.valid:
            result.fail(exists.errors[0], entity_missing=True, risk_flag=exists.risk_flag)
            return None
        return find_order(orders, order_number)

    def _order_cancellation(self, entities: dict[str, Any], result: ValidationResult) -> ValidationResult:
        order = self._lookup_order(entities, result)
        if order is None:
            return result

        guard = validate_order_cancellation(
            order.get("status", ""),
            order.get("paymentStatus"),
            order.get("fulfillmentStatus"),
        )
        if not guard.valid:
            result.valid = False
            result.business_rules_passed = False
            result.risk_flag = guard.risk_flag
            result.errors.extend(guard.errors)
        return result

    def _order_status_update(self, entities: dict[str, Any], result: ValidationResult) -> ValidationResult:
        if not entities.get("orderNumber"):
            return result.fail("Order number is required", entity_missing=True)
        status = entities.get("status")
        if not status:
            return result.fail("New status is required")

        order = self._lookup_order(entities, result)
        if order is None:
            return result

        guard = validate_status_transition(order.get("status", ""), status)
        if not guard.valid:
            result.valid = False
            result.business_rules_passed = False
            result.risk_flag = guard.risk_flag
            result.errors.extend(guard.errors)
        result.old_value = order.get("status")
        result.new_value = status
        return result

    def _order_exists(self, entities: dict[str, Any], result: ValidationResult) -> ValidationResult:
        self._lookup_order(entities, result)
        return result
