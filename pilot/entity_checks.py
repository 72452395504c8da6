"""
StorePilot — Entity Checks

Deterministic per-field guards used by the validation stage:
existence of SKUs and order numbers, price sign, product active,
price vs cost, description length.

All checks are pure: they take the records they need as arguments
and never touch the record store themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MAX_DESCRIPTION_LENGTH = 5000


@dataclass
class CheckResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    risk_flag: str | None = None


def find_variant(products: list[dict[str, Any]], sku: str) -> tuple[dict | None, dict | None]:
    """Return (product, variant) owning this SKU, or (None, None)."""
    for product in products:
        for variant in product.get("variants") or []:
            if variant.get("sku") == sku:
                return product, variant
    return None, None


def find_order(orders: list[dict[str, Any]], order_number: str) -> dict | None:
    for order in orders:
        if order.get("orderNumber") == order_number:
            return order
    return None


def check_sku_exists(sku: str, products: list[dict[str, Any]]) -> CheckResult:
    product, _ = find_variant(products, sku)
    if product is None:
        return CheckResult(False, [f"Product with SKU {sku} not found"], risk_flag="SKU_NOT_FOUND")
    return CheckResult(True)


def check_order_exists(order_number: str, orders: list[dict[str, Any]]) -> CheckResult:
    if find_order(orders, order_number) is None:
        return CheckResult(
            False, [f"Order with order number {order_number} not found"],
            risk_flag="ORDER_NOT_FOUND",
        )
    return CheckResult(True)


def check_price(price: Any) -> CheckResult:
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return CheckResult(False, ["Price must be a number"], risk_flag="INVALID_PRICE")
    if price < 0:
        return CheckResult(False, ["Price cannot be negative"], risk_flag="INVALID_PRICE")
    if price == 0:
        return CheckResult(True, warnings=["Price is set to zero"])
    return CheckResult(True)


def check_product_active(product: dict[str, Any]) -> CheckResult:
    status = product.get("status")
    if status != "active":
        return CheckResult(
            False, [f"Product is {status} and cannot be modified"],
            risk_flag="PRODUCT_INACTIVE",
        )
    return CheckResult(True)


def check_price_vs_cost(price: float, cost_price: float | None) -> CheckResult:
    """Never blocking. Below-cost prices only produce a warning."""
    if cost_price is not None and price < cost_price:
        return CheckResult(True, warnings=[
            f"Warning: New price (${price}) is below cost price (${cost_price})"
        ])
    return CheckResult(True)


def check_description(description: Any, max_length: int = MAX_DESCRIPTION_LENGTH) -> CheckResult:
    if not isinstance(description, str) or not description.strip():
        return CheckResult(False, ["Description is required"], risk_flag="INVALID_DESCRIPTION")
    if len(description) > max_length:
        return CheckResult(
            False, [f"Description cannot exceed {max_length} characters"],
            risk_flag="DESCRIPTION_TOO_LONG",
        )
    return CheckResult(True)
