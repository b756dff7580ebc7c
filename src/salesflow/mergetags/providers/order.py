"""
salesflow.mergetags.providers.order

`{{order.*}}` values from a product order record, a funnel order (via its
product order) or a serialized order dict.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from salesflow.mergetags.formatting import (
    format_money,
    format_number,
    parse_datetime,
    php_date,
    to_local,
)
from salesflow.mergetags.providers.base import DataProvider, as_text, read, resolve_order

_ADDRESS_KEYS = (
    ("line1", "address_line_1"),
    ("line2", "address_line_2"),
    ("city",),
    ("state",),
    ("postcode", "postal_code"),
    ("country",),
)


def format_address(address: Any) -> str | None:
    if isinstance(address, str):
        return address or None
    if not isinstance(address, Mapping):
        return None
    parts = [read(address, *keys) for keys in _ADDRESS_KEYS]
    joined = ", ".join(str(p) for p in parts if p)
    if joined:
        return joined
    # POS orders keep a single free-form line.
    full = address.get("full_address")
    return str(full) if full else None


def order_items(order: Any) -> list[Any]:
    items = read(order, "items", default=[])
    return list(items) if isinstance(items, (list, tuple)) else []


def item_name(item: Any) -> str:
    return str(read(item, "product_name", "name", default="Item"))


def item_quantity(item: Any) -> int:
    qty = read(item, "quantity_ordered", "quantity", default=1)
    try:
        return int(qty)
    except (TypeError, ValueError):
        return 1


class OrderDataProvider(DataProvider):
    def get_value(self, field: str, context: Mapping[str, Any]) -> str | None:
        order = resolve_order(context)
        if order is None:
            return None

        currency = str(read(order, "currency", default="MYR"))
        if field == "number":
            return as_text(read(order, "order_number", "number", "id"))
        if field == "total":
            return format_money(self._total(order), currency)
        if field == "total_raw":
            return format_number(self._total(order))
        if field == "subtotal":
            return format_money(self._subtotal(order), currency)
        if field == "subtotal_raw":
            return format_number(self._subtotal(order))
        if field == "currency":
            return currency
        if field == "status":
            return as_text(read(order, "status", default="pending"))
        if field == "items_count":
            return str(len(order_items(order)))
        if field == "items_list":
            items = order_items(order)
            if not items:
                return "- No items"
            return "\n".join(f"- {item_name(i)} (x{item_quantity(i)})" for i in items)
        if field == "first_item_name":
            items = order_items(order)
            return item_name(items[0]) if items else None
        if field == "discount_amount":
            return format_money(read(order, "discount_amount", "discount", default=0), currency)
        if field == "coupon_code":
            return as_text(read(order, "coupon_code"))
        if field == "date":
            placed = parse_datetime(read(order, "order_date", "created_at")) or self._clock()
            return php_date(to_local(placed, self._settings.timezone), "d M Y")
        if field == "shipping_address":
            return format_address(read(order, "shipping_address"))
        if field == "billing_address":
            return format_address(read(order, "billing_address", "shipping_address"))
        return None

    @staticmethod
    def _total(order: Any) -> Any:
        return read(order, "total_amount", "total", default=0)

    @staticmethod
    def _subtotal(order: Any) -> Any:
        return read(order, "subtotal", "total_amount", "total", default=0)
