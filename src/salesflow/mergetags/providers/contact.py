"""
salesflow.mergetags.providers.contact

`{{contact.*}}`: name, first_name, last_name, email, phone.

Lookup order: the `contact` record/dict, then the order's customer snapshot,
then flat `name`/`email`/`phone` context keys.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from salesflow.mergetags.providers.base import DataProvider, read, resolve_order


class ContactDataProvider(DataProvider):
    def get_value(self, field: str, context: Mapping[str, Any]) -> str | None:
        if field == "name":
            return self._name(context)
        if field in ("first_name", "last_name"):
            explicit = read(context.get("contact"), field)
            if explicit:
                return str(explicit)
            name = self._name(context)
            if not name:
                return None
            parts = name.split()
            if field == "first_name":
                return parts[0]
            return " ".join(parts[1:]) or None
        if field == "email":
            return self._email(context)
        if field == "phone":
            return self._phone(context)
        return None

    def _name(self, context: Mapping[str, Any]) -> str | None:
        value = read(context.get("contact"), "name")
        if value:
            return str(value)
        order = resolve_order(context)
        if order is not None:
            value = read(order, "customer_name")
            if not value:
                customer = read(order, "customer")
                value = read(customer, "name")
            if value:
                return str(value)
        value = context.get("name")
        return str(value) if value else None

    def _email(self, context: Mapping[str, Any]) -> str | None:
        value = read(context.get("contact"), "email")
        if value:
            return str(value)
        order = resolve_order(context)
        if order is not None:
            value = read(order, "guest_email", "customer_email")
            if not value:
                value = read(read(order, "customer"), "email")
            if value:
                return str(value)
        value = context.get("email")
        return str(value) if value else None

    def _phone(self, context: Mapping[str, Any]) -> str | None:
        value = read(context.get("contact"), "phone")
        if value:
            return str(value)
        order = resolve_order(context)
        if order is not None:
            value = read(order, "customer_phone")
            if not value:
                value = read(read(order, "customer"), "phone")
            if value:
                return str(value)
        value = context.get("phone")
        return str(value) if value else None
