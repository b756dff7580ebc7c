"""
salesflow.mergetags.providers.system

Date/time (in the configured timezone) and company identity values.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from salesflow.mergetags.formatting import php_date, to_local
from salesflow.mergetags.providers.base import DataProvider

_DATE_PATTERNS = {
    "current_date": "d M Y",
    "current_time": "h:i A",
    "current_datetime": "d M Y, h:i A",
    "current_year": "Y",
    "current_month": "F",
    "current_day": "l",
}


class SystemDataProvider(DataProvider):
    def get_value(self, field: str, context: Mapping[str, Any]) -> str | None:
        pattern = _DATE_PATTERNS.get(field)
        if pattern is not None:
            return php_date(to_local(self._clock(), self._settings.timezone), pattern)
        if field == "company_name":
            return self._settings.company_name
        if field == "company_email":
            return self._settings.company_email
        if field == "company_phone":
            return self._settings.company_phone
        return None
