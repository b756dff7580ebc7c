"""
salesflow.mergetags.providers.cart

`{{cart.*}}` values for abandoned-cart messages.

Without a cart record the flat context keys (`cart_total`, `cart_items_count`,
`cart_items_list`, `cart_first_item`, `checkout_url`, `recovery_url`) are used.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from salesflow.mergetags.formatting import format_money, format_number, humanize_since, parse_datetime
from salesflow.mergetags.providers.base import DataProvider, read, resolve_cart


def cart_items(cart: Any) -> list[Any]:
    data = read(cart, "cart_data", default={})
    if isinstance(data, Mapping):
        items = data.get("items", [])
    else:
        items = data
    return list(items) if isinstance(items, (list, tuple)) else []


class CartDataProvider(DataProvider):
    def get_value(self, field: str, context: Mapping[str, Any]) -> str | None:
        cart = resolve_cart(context)
        if cart is None:
            return self._from_flat_context(field, context)

        currency = str(read(cart, "currency", default="MYR"))
        if field == "total":
            return format_money(read(cart, "total_amount", "total", default=0), currency)
        if field == "total_raw":
            return format_number(read(cart, "total_amount", "total", default=0))
        if field == "items_count":
            return str(len(cart_items(cart)))
        if field == "items_list":
            items = cart_items(cart)
            if not items:
                return "- Empty cart"
            lines = []
            for item in items:
                name = read(item, "name", "product_name", default="Item")
                qty = read(item, "quantity", default=1)
                lines.append(f"- {name} (x{qty})")
            return "\n".join(lines)
        if field == "first_item_name":
            items = cart_items(cart)
            if not items:
                return None
            name = read(items[0], "name", "product_name")
            return str(name) if name else None
        if field in ("checkout_url", "recovery_url"):
            return self._checkout_url(cart, context)
        if field == "abandoned_at":
            moment = parse_datetime(read(cart, "abandoned_at", "updated_at", "created_at"))
            if moment is None:
                return None
            return humanize_since(moment, self._clock())
        return None

    def _checkout_url(self, cart: Any, context: Mapping[str, Any]) -> str | None:
        base = self._settings.app_url.rstrip("/")
        token = read(cart, "recovery_token")
        if token:
            return f"{base}/cart/recover/{token}"
        funnel = read(cart, "funnel") or context.get("funnel")
        slug = read(funnel, "slug", "id")
        if slug:
            return f"{base}/f/{slug}/checkout"
        return None

    def _from_flat_context(self, field: str, context: Mapping[str, Any]) -> str | None:
        if field == "total":
            total = context.get("cart_total")
            return None if total is None else format_money(total, context.get("currency") or "MYR")
        if field == "total_raw":
            total = context.get("cart_total")
            return None if total is None else format_number(total)
        if field == "items_count":
            count = context.get("cart_items_count")
            return None if count is None else str(count)
        if field == "items_list":
            return context.get("cart_items_list")
        if field == "first_item_name":
            return context.get("cart_first_item")
        if field == "checkout_url":
            return context.get("checkout_url")
        if field == "recovery_url":
            return context.get("recovery_url") or context.get("checkout_url")
        return None
