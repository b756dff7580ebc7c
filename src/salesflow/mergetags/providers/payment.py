"""
salesflow.mergetags.providers.payment

`{{payment.*}}`: method, reference, status, paid_at, bank.

Reads the `payment` record/dict, else the order's latest payment.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from salesflow.mergetags.formatting import parse_datetime, php_date, to_local
from salesflow.mergetags.providers.base import DataProvider, as_text, read, resolve_order


class PaymentDataProvider(DataProvider):
    def get_value(self, field: str, context: Mapping[str, Any]) -> str | None:
        payment = context.get("payment") or self._latest_payment(context)
        if payment is None:
            return None

        if field == "method":
            return as_text(read(payment, "payment_method", "method"))
        if field == "reference":
            return as_text(read(payment, "reference_number", "reference", "transaction_id"))
        if field == "status":
            return as_text(read(payment, "status"))
        if field == "paid_at":
            paid = parse_datetime(read(payment, "paid_at"))
            if paid is None:
                return None
            return php_date(to_local(paid, self._settings.timezone), "d M Y, h:i A")
        if field == "bank":
            bank = read(payment, "bank") or read(read(payment, "meta", "metadata"), "bank")
            return as_text(bank)
        return None

    @staticmethod
    def _latest_payment(context: Mapping[str, Any]) -> Any:
        order = resolve_order(context)
        payments = read(order, "payments", default=[])
        if not isinstance(payments, (list, tuple)) or not payments:
            return None
        return sorted(payments, key=lambda p: str(read(p, "created_at", default="")))[-1]
