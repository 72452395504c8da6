"""
StorePilot — Executor Registry

Write-side counterpart to ToolRegistry (which handles reads).

An executor takes the validated entities of one intent and performs
the mutation against the record store through Catalog. Executors are
registered by intent name. Every executor returns the same shape:

    {"success": bool, "data": dict | None, "error": str | None}

Usage:
    registry = create_store_executors(catalog)
    result = registry.execute("UPDATE_PRODUCT_PRICE",
                              {"sku": "HP-BLK-001", "newPrice": 49.99})
    result.success     # True
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from pilot.catalog import Catalog
from pilot.state import ExecutionResult, Intent

logger = logging.getLogger("storepilot.actions")

Executor = Callable[[dict[str, Any]], dict[str, Any]]


# ---------------------------------------------------------------------------
# Executor specification
# ---------------------------------------------------------------------------

@dataclass
class ExecutorSpec:
    """Registration entry for an executor."""
    intent: str
    fn: Executor
    description: str = ""
    reversible: bool = True
    read_only: bool = False
    side_effects: list[str] = field(default_factory=list)


@dataclass
class ExecutionRecord:
    """One entry in the registry's execution log."""
    intent: str
    success: bool
    error: str | None = None
    latency_ms: float = 0.0


# ---------------------------------------------------------------------------
# Executor Registry
# ---------------------------------------------------------------------------

class ExecutorRegistry:
    """Maps intent names to executors and normalizes their results."""

    def __init__(self):
        self._executors: dict[str, ExecutorSpec] = {}
        self._execution_log: list[ExecutionRecord] = []

    def register(
        self,
        intent: str,
        fn: Executor,
        description: str = "",
        reversible: bool = True,
        read_only: bool = False,
        side_effects: list[str] | None = None,
    ):
        self._executors[intent] = ExecutorSpec(
            intent=intent,
            fn=fn,
            description=description,
            reversible=reversible,
            read_only=read_only,
            side_effects=side_effects or [],
        )

    def get(self, intent: str) -> ExecutorSpec | None:
        return self._executors.get(intent)

    def list_intents(self) -> list[str]:
        return list(self._executors.keys())

    def describe(self) -> str:
        """Human-readable description for LLM prompts."""
        if not self._executors:
            return "No executors registered."
        lines = []
        for spec in self._executors.values():
            kind = " (read-only)" if spec.read_only else ("" if spec.reversible else " (IRREVERSIBLE)")
            lines.append(f"  - {spec.intent}{kind}: {spec.description}")
        return "\n".join(lines)

    def execute(self, intent: str, entities: dict[str, Any]) -> ExecutionResult:
        """
        Run the executor for this intent. Exceptions from the executor
        become a failed result carrying the exception message verbatim.
        """
        spec = self._executors.get(intent)
        if spec is None:
            return ExecutionResult(success=False, error=f"Unsupported intent: {intent}")

        t0 = time.time()
        try:
            raw = spec.fn(dict(entities))
            result = ExecutionResult.from_dict(raw)
        except KeyError as e:
            result = ExecutionResult(success=False, error=f"Missing required entity: {e.args[0]}")
        except Exception as e:
            logger.warning("Executor %s failed: %s", intent, e)
            result = ExecutionResult(success=False, error=str(e))

        self._execution_log.append(ExecutionRecord(
            intent=intent,
            success=result.success,
            error=result.error,
            latency_ms=(time.time() - t0) * 1000,
        ))
        return result

    def get_execution_log(self) -> list[ExecutionRecord]:
        return list(self._execution_log)

    def clear_log(self):
        self._execution_log.clear()


# ---------------------------------------------------------------------------
# Store-backed executors
# ---------------------------------------------------------------------------

def _ok(data: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "data": data, "error": None}


def _number(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = value.strip().lstrip("$").replace(",", "")
    return float(value)


def _int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def create_store_executors(catalog: Catalog) -> ExecutorRegistry:
    """Register one executor per supported intent, backed by the catalog."""
    registry = ExecutorRegistry()
    I = Intent

    # ── Products ──
    registry.register(
        I.UPDATE_PRODUCT_PRICE.value,
        lambda e: _ok(catalog.update_product_price(e["sku"], _number(e["newPrice"]))),
        description="Set the price of the variant with this SKU",
    )
    registry.register(
        I.UPDATE_PRODUCT_DESCRIPTION.value,
        lambda e: _ok(catalog.update_product_description(e["sku"], e["description"])),
        description="Replace a product description",
    )
    registry.register(
        I.UPDATE_PRODUCT_NAME.value,
        lambda e: _ok(catalog.update_product_name(e["sku"], e["newName"])),
        description="Rename a product",
    )
    registry.register(
        I.UPDATE_PRODUCT_STATUS.value,
        lambda e: _ok(catalog.update_product_status(e["sku"], e["newStatus"])),
        description="Set product status (active, draft, archived, discontinued)",
    )
    registry.register(
        I.UPDATE_PRODUCT_TAGS.value,
        lambda e: _ok(catalog.update_product_tags(e["sku"], e["tags"])),
        description="Replace product tags",
    )
    registry.register(
        I.UPDATE_VARIANT_COMPARE_AT_PRICE.value,
        lambda e: _ok(catalog.update_variant_compare_at_price(e["sku"], _number(e.get("compareAtPrice")))),
        description="Set a variant's compare-at price",
    )
    registry.register(
        I.UPDATE_VARIANT_COST_PRICE.value,
        lambda e: _ok(catalog.update_variant_cost_price(e["sku"], _number(e.get("costPrice")))),
        description="Set a variant's cost price",
    )
    registry.register(
        I.ARCHIVE_PRODUCT.value,
        lambda e: _ok(catalog.archive_product(e["sku"])),
        description="Archive a product (data preserved)",
    )
    registry.register(
        I.UNARCHIVE_PRODUCT.value,
        lambda e: _ok(catalog.unarchive_product(e["sku"], e.get("targetStatus") or "active")),
        description="Restore an archived product",
    )

    # ── Orders ──
    registry.register(
        I.CANCEL_ORDER.value,
        lambda e: _ok(catalog.cancel_order(e["orderNumber"], e.get("cancelReason"))),
        description="Cancel an order that has not shipped",
        reversible=False,
    )
    registry.register(
        I.UPDATE_ORDER_STATUS.value,
        lambda e: _ok(catalog.update_order_status(e["orderNumber"], e["status"])),
        description="Move an order to a new lifecycle status",
    )
    registry.register(
        I.ADD_ORDER_NOTE.value,
        lambda e: _ok(catalog.add_order_note(e["orderNumber"], e["content"], bool(e.get("isPrivate")))),
        description="Append a note to an order",
    )
    registry.register(
        I.UPDATE_ORDER_SHIPPING_ADDRESS.value,
        lambda e: _ok(catalog.update_order_shipping_address(e["orderNumber"], e["shippingAddress"])),
        description="Update an order's shipping address",
    )
    registry.register(
        I.UPDATE_ORDER_BILLING_ADDRESS.value,
        lambda e: _ok(catalog.update_order_billing_address(e["orderNumber"], e["billingAddress"])),
        description="Update an order's billing address",
    )
    registry.register(
        I.ARCHIVE_ORDER.value,
        lambda e: _ok(catalog.archive_order(e["orderNumber"])),
        description="Archive an order (data preserved)",
    )
    registry.register(
        I.UNARCHIVE_ORDER.value,
        lambda e: _ok(catalog.unarchive_order(e["orderNumber"])),
        description="Restore an archived order",
    )

    # ── Reads ──
    def list_products(e):
        page = catalog.list_products(e.get("status"), e.get("query"),
                                     page=_int(e.get("page"), 1), limit=_int(e.get("limit"), 50))
        return _ok({"products": page["data"], **page["pagination"]})

    def list_orders(e):
        page = catalog.list_orders(e.get("status"), bool(e.get("includeArchived")),
                                   page=_int(e.get("page"), 1), limit=_int(e.get("limit"), 50))
        return _ok({"orders": page["data"], **page["pagination"]})

    def list_promotions(e):
        page = catalog.list_promotions(e.get("status"),
                                       page=_int(e.get("page"), 1), limit=_int(e.get("limit"), 50))
        return _ok({"promotions": page["data"], **page["pagination"]})

    def show_product(e):
        product, variant = catalog.get_product_by_sku(e["sku"])
        return _ok({"product": product, "variant": variant})

    def show_order(e):
        return _ok({"order": catalog.get_order(e["orderNumber"])})

    registry.register(I.LIST_PRODUCTS.value, list_products, "List products", read_only=True)
    registry.register(I.LIST_ORDERS.value, list_orders, "List orders", read_only=True)
    registry.register(I.LIST_PROMOTIONS.value, list_promotions, "List promotions", read_only=True)
    registry.register(I.SHOW_PRODUCT_INFO.value, show_product, "Show one product by SKU", read_only=True)
    registry.register(I.SHOW_ORDER_INFO.value, show_order, "Show one order by number", read_only=True)

    return registry
