"""
salesflow.mergetags.providers.funnel

`{{funnel.*}}`: name, url, step_name, step_url.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from salesflow.mergetags.providers.base import (
    DataProvider,
    read,
    resolve_cart,
    resolve_session,
)


class FunnelDataProvider(DataProvider):
    def get_value(self, field: str, context: Mapping[str, Any]) -> str | None:
        funnel = self._funnel(context)
        step = context.get("funnel_step") or context.get("step")
        base = self._settings.app_url.rstrip("/")
        slug = read(funnel, "slug")

        if field == "name":
            name = read(funnel, "name")
            return str(name) if name else None
        if field == "url":
            return f"{base}/f/{slug}" if slug else None
        if field == "step_name":
            name = read(step, "name")
            return str(name) if name else None
        if field == "step_url":
            step_slug = read(step, "slug")
            if slug and step_slug:
                return f"{base}/f/{slug}/{step_slug}"
            return None
        return None

    @staticmethod
    def _funnel(context: Mapping[str, Any]) -> Any:
        funnel = context.get("funnel")
        if funnel is not None and read(funnel, "slug", "name"):
            return funnel
        for holder in (resolve_session(context), resolve_cart(context)):
            found = read(holder, "funnel")
            if found is not None:
                return found
        return funnel
