"""
StorePilot — Catalog Operations

Domain mutations and listings over the record store: products (and
their variants), orders, promotions. This is the only module that
writes records; executors and read tools both go through it.

Every mutation raises ExecutionError when the target is missing or
the requested value is not acceptable. Write failures from the record
store propagate unchanged.

Usage:
    catalog = Catalog(registry)
    result = catalog.update_product_price("HP-BLK-001", 49.99)
    result["oldPrice"]   # 29.99
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from pilot.entity_checks import MAX_DESCRIPTION_LENGTH, find_order, find_variant
from pilot.errors import ExecutionError
from pilot.records import RecordStore, StoreRegistry, paginate

logger = logging.getLogger("storepilot.catalog")

PRODUCT_STATUSES = ("active", "draft", "archived", "discontinued")
ORDER_STATUSES = (
    "pending", "confirmed", "processing", "on_hold", "shipped",
    "partially_shipped", "delivered", "completed", "cancelled",
    "refunded", "partially_refunded",
)
ADDRESS_FIELDS = (
    "firstName", "lastName", "company", "address1", "address2",
    "city", "province", "country", "zip", "phone",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Catalog:
    """Product, order and promotion operations backed by a StoreRegistry."""

    def __init__(self, registry: StoreRegistry):
        self.registry = registry

    @property
    def products(self) -> RecordStore:
        return self.registry.get("products")

    @property
    def orders(self) -> RecordStore:
        return self.registry.get("orders")

    @property
    def promotions(self) -> RecordStore:
        return self.registry.get("promotions")

    # ─── Lookups ────────────────────────────────────────────────────

    def get_product_by_sku(self, sku: str) -> tuple[dict, dict]:
        product, variant = find_variant(self.products.get_all(), sku)
        if product is None:
            raise ExecutionError(f"Product with SKU {sku} not found", sku=sku)
        return product, variant

    def get_order(self, order_number: str) -> dict:
        order = find_order(self.orders.get_all(), order_number)
        if order is None:
            raise ExecutionError(f"Order with order number {order_number} not found",
                                 order_number=order_number)
        return order

    # ─── Listings ───────────────────────────────────────────────────

    def list_products(self, status: str | None = None, query: str | None = None,
                      page: int = 1, limit: int = 20) -> dict[str, Any]:
        items = self.products.get_all()
        if status:
            items = [p for p in items if p.get("status") == status]
        if query:
            q = query.lower()
            items = [
                p for p in items
                if q in (p.get("name") or "").lower()
                or q in (p.get("description") or "").lower()
                or any(q == (v.get("sku") or "").lower() for v in p.get("variants") or [])
            ]
        return paginate(items, page=page, limit=limit, sort_by="name")

    def list_orders(self, status: str | None = None, include_archived: bool = False,
                    page: int = 1, limit: int = 20) -> dict[str, Any]:
        items = self.orders.get_all()
        if status:
            items = [o for o in items if o.get("status") == status]
        if not include_archived:
            items = [o for o in items if not o.get("archived")]
        return paginate(items, page=page, limit=limit, sort_by="createdAt", sort_order="desc")

    def list_promotions(self, status: str | None = None,
                        page: int = 1, limit: int = 20) -> dict[str, Any]:
        items = self.promotions.get_all()
        if status:
            items = [p for p in items if p.get("status") == status]
        return paginate(items, page=page, limit=limit, sort_by="name")

    # ─── Product mutations ──────────────────────────────────────────

    def _update_variant(self, sku: str, changes: dict[str, Any]) -> tuple[dict, dict, dict]:
        """Apply changes to one variant. Returns (old_variant, product, new_variant)."""
        product, variant = self.get_product_by_sku(sku)
        now = _now()
        variants = []
        for v in product.get("variants") or []:
            if v.get("sku") == sku:
                v = {**v, **changes, "updatedAt": now}
                updated_variant = v
            variants.append(v)
        saved = self.products.update(product["id"], {"variants": variants, "updatedAt": now})
        if saved is None:
            raise ExecutionError(f"Failed to update product for SKU {sku}", sku=sku)
        return variant, saved, updated_variant

    def _update_product(self, sku: str, changes: dict[str, Any]) -> tuple[dict, dict]:
        """Apply product-level changes. Returns (old_product, new_product)."""
        product, _ = self.get_product_by_sku(sku)
        saved = self.products.update(product["id"], {**changes, "updatedAt": _now()})
        if saved is None:
            raise ExecutionError(f"Failed to update product for SKU {sku}", sku=sku)
        return product, saved

    def update_product_price(self, sku: str, new_price: float) -> dict[str, Any]:
        if new_price < 0:
            raise ExecutionError("Price cannot be negative", sku=sku)
        old, product, variant = self._update_variant(sku, {"price": new_price})
        logger.info("Price for %s: %s -> %s", sku, old.get("price"), new_price)
        return {
            "sku": sku,
            "oldPrice": old.get("price"),
            "newPrice": new_price,
            "productName": product.get("name") or "Unknown",
            "updatedAt": variant["updatedAt"],
        }

    def update_variant_compare_at_price(self, sku: str, compare_at_price: float | None) -> dict[str, Any]:
        if compare_at_price is not None and compare_at_price < 0:
            raise ExecutionError("Compare at price cannot be negative", sku=sku)
        old, product, variant = self._update_variant(sku, {"compareAtPrice": compare_at_price})
        return {
            "sku": sku,
            "oldCompareAtPrice": old.get("compareAtPrice"),
            "newCompareAtPrice": compare_at_price,
            "productName": product.get("name") or "Unknown",
            "updatedAt": variant["updatedAt"],
        }

    def update_variant_cost_price(self, sku: str, cost_price: float | None) -> dict[str, Any]:
        if cost_price is not None and cost_price < 0:
            raise ExecutionError("Cost price cannot be negative", sku=sku)
        old, product, variant = self._update_variant(sku, {"costPrice": cost_price})
        return {
            "sku": sku,
            "oldCostPrice": old.get("costPrice"),
            "newCostPrice": cost_price,
            "productName": product.get("name") or "Unknown",
            "updatedAt": variant["updatedAt"],
        }

    def update_product_description(self, sku: str, description: str) -> dict[str, Any]:
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ExecutionError(
                f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters", sku=sku,
            )
        _, saved = self._update_product(sku, {"description": description})
        return {
            "sku": sku,
            "description": description,
            "productName": saved.get("name") or "Unknown",
            "updatedAt": saved["updatedAt"],
        }

    def update_product_name(self, sku: str, new_name: str) -> dict[str, Any]:
        if not new_name or not new_name.strip():
            raise ExecutionError("Product name cannot be empty", sku=sku)
        old, saved = self._update_product(sku, {"name": new_name.strip()})
        return {
            "sku": sku,
            "oldName": old.get("name"),
            "newName": saved["name"],
            "updatedAt": saved["updatedAt"],
        }

    def update_product_status(self, sku: str, new_status: str) -> dict[str, Any]:
        if new_status not in PRODUCT_STATUSES:
            raise ExecutionError(
                f"Invalid status. Valid statuses are: {', '.join(PRODUCT_STATUSES)}", sku=sku,
            )
        old, saved = self._update_product(sku, {"status": new_status})
        return {
            "sku": sku,
            "oldStatus": old.get("status"),
            "newStatus": new_status,
            "productName": saved.get("name") or "Unknown",
            "updatedAt": saved["updatedAt"],
        }

    def update_product_tags(self, sku: str, tags: list[str]) -> dict[str, Any]:
        if isinstance(tags, str):
            tags = [t.strip() for t in tags.split(",")]
        cleaned = [t for t in dict.fromkeys(str(t).strip() for t in tags) if t]
        old, saved = self._update_product(sku, {"tags": cleaned})
        return {
            "sku": sku,
            "oldTags": old.get("tags") or [],
            "newTags": cleaned,
            "productName": saved.get("name") or "Unknown",
            "updatedAt": saved["updatedAt"],
        }

    def archive_product(self, sku: str) -> dict[str, Any]:
        old, saved = self._update_product(sku, {"status": "archived", "archivedAt": _now()})
        return {
            "sku": sku,
            "oldStatus": old.get("status"),
            "newStatus": "archived",
            "productName": saved.get("name") or "Unknown",
            "updatedAt": saved["updatedAt"],
        }

    def unarchive_product(self, sku: str, target_status: str = "active") -> dict[str, Any]:
        if target_status not in ("active", "draft"):
            raise ExecutionError("Unarchive target status must be active or draft", sku=sku)
        product, _ = self.get_product_by_sku(sku)
        if product.get("status") != "archived":
            raise ExecutionError(
                f"Product with SKU {sku} is not archived. Current status: {product.get('status')}",
                sku=sku,
            )
        old, saved = self._update_product(sku, {"status": target_status, "archivedAt": None})
        return {
            "sku": sku,
            "oldStatus": old.get("status"),
            "newStatus": target_status,
            "productName": saved.get("name") or "Unknown",
            "updatedAt": saved["updatedAt"],
        }

    # ─── Order mutations ────────────────────────────────────────────

    def _update_order(self, order_number: str, changes: dict[str, Any]) -> tuple[dict, dict]:
        order = self.get_order(order_number)
        saved = self.orders.update(order["id"], {**changes, "updatedAt": _now()})
        if saved is None:
            raise ExecutionError(f"Failed to update order {order_number}", order_number=order_number)
        return order, saved

    def update_order_status(self, order_number: str, new_status: str) -> dict[str, Any]:
        if new_status not in ORDER_STATUSES:
            raise ExecutionError(f"Invalid order status: {new_status}", order_number=order_number)
        old, saved = self._update_order(order_number, {"status": new_status})
        logger.info("Order %s: %s -> %s", order_number, old.get("status"), new_status)
        return {
            "orderNumber": order_number,
            "oldStatus": old.get("status"),
            "newStatus": new_status,
            "updatedAt": saved["updatedAt"],
        }

    def cancel_order(self, order_number: str, reason: str | None = None) -> dict[str, Any]:
        order = self.get_order(order_number)
        if order.get("status") in ("shipped", "delivered"):
            raise ExecutionError(
                f"Cannot cancel order {order_number}. Order has already been {order['status']}",
                order_number=order_number,
            )
        if order.get("status") == "cancelled":
            raise ExecutionError(f"Order {order_number} is already cancelled",
                                 order_number=order_number)
        now = _now()
        _, saved = self._update_order(order_number, {
            "status": "cancelled",
            "cancelReason": reason or "Cancelled by admin",
            "cancelledAt": now,
        })
        return {
            "orderNumber": order_number,
            "status": saved["status"],
            "cancelReason": saved["cancelReason"],
            "updatedAt": saved["updatedAt"],
        }

    def add_order_note(self, order_number: str, content: str, is_private: bool = False) -> dict[str, Any]:
        if not content or not str(content).strip():
            raise ExecutionError("Note content cannot be empty", order_number=order_number)
        order = self.get_order(order_number)
        note = {
            "id": f"note_{uuid.uuid4().hex[:8]}",
            "content": str(content).strip(),
            "isPrivate": bool(is_private),
            "createdAt": _now(),
        }
        notes = list(order.get("notes") or []) + [note]
        _, saved = self._update_order(order_number, {"notes": notes})
        return {"orderNumber": order_number, "note": note, "updatedAt": saved["updatedAt"]}

    def _update_address(self, order_number: str, key: str, address: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(address, dict) or not address:
            raise ExecutionError(f"{key} must be a non-empty object", order_number=order_number)
        unknown = sorted(set(address) - set(ADDRESS_FIELDS))
        if unknown:
            raise ExecutionError(f"Unknown address fields: {', '.join(unknown)}",
                                 order_number=order_number)
        order = self.get_order(order_number)
        merged = {**(order.get(key) or {}), **address}
        _, saved = self._update_order(order_number, {key: merged})
        return {"orderNumber": order_number, key: merged, "updatedAt": saved["updatedAt"]}

    def update_order_shipping_address(self, order_number: str, address: dict[str, Any]) -> dict[str, Any]:
        return self._update_address(order_number, "shippingAddress", address)

    def update_order_billing_address(self, order_number: str, address: dict[str, Any]) -> dict[str, Any]:
        return self._update_address(order_number, "billingAddress", address)

    def archive_order(self, order_number: str) -> dict[str, Any]:
        _, saved = self._update_order(order_number, {"archived": True, "archivedAt": _now()})
        return {"orderNumber": order_number, "archived": True, "updatedAt": saved["updatedAt"]}

    def unarchive_order(self, order_number: str) -> dict[str, Any]:
        order = self.get_order(order_number)
        if not order.get("archived"):
            raise ExecutionError(f"Order {order_number} is not archived", order_number=order_number)
        _, saved = self._update_order(order_number, {"archived": False, "archivedAt": None})
        return {"orderNumber": order_number, "archived": False, "updatedAt": saved["updatedAt"]}
