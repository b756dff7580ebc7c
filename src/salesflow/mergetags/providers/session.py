"""
salesflow.mergetags.providers.session

`{{session.*}}` tracking values (UTM, device, browser, country, referrer).

Direct context keys win over the session record, matching how tracking data
is passed in by the public funnel endpoints.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from salesflow.mergetags.providers.base import DataProvider, read, resolve_session

UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")


def normalize_device(device: str) -> str:
    lowered = device.lower()
    if "mobile" in lowered or "phone" in lowered:
        return "mobile"
    if "tablet" in lowered or "ipad" in lowered:
        return "tablet"
    if "desktop" in lowered or "computer" in lowered:
        return "desktop"
    return lowered


def referrer_host(referrer: str) -> str:
    return urlparse(referrer).hostname or referrer


class SessionDataProvider(DataProvider):
    def get_value(self, field: str, context: Mapping[str, Any]) -> str | None:
        session = resolve_session(context)
        if field in UTM_FIELDS:
            return self._utm(field, session, context)
        if field == "device":
            direct = read(context, "device", "device_type")
            if direct:
                return str(direct)
            device = read(session, "device") or read(self._meta(session), "device")
            return normalize_device(str(device)) if device else None
        if field == "browser":
            return self._str(read(context, "browser") or read(session, "browser") or read(self._meta(session), "browser"))
        if field == "country":
            direct = read(context, "country")
            if direct:
                return str(direct)
            country = read(session, "country") or read(self._meta(session), "country")
            return str(country).upper() if country else None
        if field == "referrer":
            direct = read(context, "referrer", "referer")
            if direct:
                return str(direct)
            referrer = read(session, "referrer")
            return referrer_host(str(referrer)) if referrer else None
        if field == "ip_address":
            return self._str(read(context, "ip_address", "ip") or read(session, "ip_address"))
        if field == "landing_page":
            return self._str(read(context, "landing_page") or read(session, "landing_page"))
        return None

    def _utm(self, key: str, session: Any, context: Mapping[str, Any]) -> str | None:
        direct = context.get(key)
        if direct:
            return str(direct)
        value = read(session, key)
        if value:
            return str(value)
        for container in (read(session, "utm_data", "tracking_data"), read(context, "utm_data", "tracking_data")):
            value = read(container, key) if isinstance(container, Mapping) else None
            if value:
                return str(value)
        return None

    @staticmethod
    def _meta(session: Any) -> Mapping[str, Any]:
        meta = read(session, "meta", "metadata", default={})
        return meta if isinstance(meta, Mapping) else {}

    @staticmethod
    def _str(value: Any) -> str | None:
        return str(value) if value else None
