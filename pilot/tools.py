"""
StorePilot — Tool Registry

Read-only query tools the intent extractor may call before it commits
to a plan (e.g. to resolve "the black headphones" to a SKU).

A "tool" is a callable that takes an argument dict and returns data
(dict). Tools are registered by name. Nothing registered here may
mutate the record store; writes go through ExecutorRegistry.

Usage:
    tools = create_catalog_tools(catalog)
    tools.describe()                      # for the extractor prompt
    result = tools.call("get_product_by_sku", {"sku": "HP-BLK-001"})
    result.status                         # "success"
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from pilot.catalog import Catalog


@dataclass
class ToolResult:
    """Result of calling a single tool."""
    source: str
    status: str  # success | failed
    data: dict[str, Any] | None = None
    error: str | None = None
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "status": self.status, "data": self.data, "error": self.error}


@dataclass
class ToolSpec:
    """Registration entry for a tool."""
    name: str
    fn: Callable[[dict[str, Any]], dict[str, Any]]
    description: str = ""
    params: str = ""


class ToolRegistry:
    """Central registry of read-only query tools."""

    def __init__(self):
        self._tools: dict[str, ToolSpec] = {}

    def register(
        self,
        name: str,
        fn: Callable[[dict[str, Any]], dict[str, Any]],
        description: str = "",
        params: str = "",
    ):
        self._tools[name] = ToolSpec(name=name, fn=fn, description=description, params=params)

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def describe(self) -> str:
        """Human-readable description of all registered tools (for LLM prompts)."""
        if not self._tools:
            return "No tools registered."
        lines = []
        for spec in self._tools.values():
            args = f"({spec.params})" if spec.params else "()"
            lines.append(f"  - {spec.name}{args}: {spec.description}")
        return "\n".join(lines)

    def call(self, name: str, args: dict[str, Any] | None = None) -> ToolResult:
        spec = self._tools.get(name)
        if spec is None:
            return ToolResult(source=name, status="failed", error=f"Tool '{name}' not registered")

        t0 = time.time()
        try:
            data = spec.fn(dict(args or {}))
            return ToolResult(
                source=name, status="success", data=data,
                latency_ms=(time.time() - t0) * 1000,
            )
        except Exception as e:
            return ToolResult(
                source=name, status="failed", error=str(e),
                latency_ms=(time.time() - t0) * 1000,
            )


# ---------------------------------------------------------------------------
# Catalog-backed tools
# ---------------------------------------------------------------------------

def create_catalog_tools(catalog: Catalog, max_rows: int = 20) -> ToolRegistry:
    """Tools over the live catalog. Listings are capped at max_rows."""
    registry = ToolRegistry()

    def get_product_by_sku(args):
        product, variant = catalog.get_product_by_sku(args["sku"])
        return {"product": product, "variant": variant}

    def get_order_by_number(args):
        return {"order": catalog.get_order(args["orderNumber"])}

    def list_products(args):
        page = catalog.list_products(args.get("status"), args.get("query"), page=1, limit=max_rows)
        return {"products": page["data"], "total": page["pagination"]["total"]}

    def list_orders(args):
        page = catalog.list_orders(args.get("status"), page=1, limit=max_rows)
        return {"orders": page["data"], "total": page["pagination"]["total"]}

    def list_promotions(args):
        page = catalog.list_promotions(args.get("status"), page=1, limit=max_rows)
        return {"promotions": page["data"], "total": page["pagination"]["total"]}

    registry.register("get_product_by_sku", get_product_by_sku,
                      "Look up a product and its variant by SKU", params="sku")
    registry.register("get_order_by_number", get_order_by_number,
                      "Look up an order by order number", params="orderNumber")
    registry.register("list_products", list_products,
                      "Search products by status or free-text query", params="status?, query?")
    registry.register("list_orders", list_orders,
                      "List orders, optionally filtered by status", params="status?")
    registry.register("list_promotions", list_promotions,
                      "List promotions, optionally filtered by status", params="status?")
    return registry
