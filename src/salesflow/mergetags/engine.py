"""
salesflow.mergetags.engine

Merge-tag resolution for outbound messages.

Responsibilities:
- Replace `{{category.field|modifier:"arg"}}` tags using the data providers.
- Apply modifiers left to right (default, format, upper, lower, ucfirst, trim).
- Extract, validate and preview the tags used in a template.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any

from salesflow.db.models import utcnow
from salesflow.mergetags.formatting import format_number, parse_datetime, php_date
from salesflow.mergetags.providers import build_providers
from salesflow.mergetags.registry import VariableRegistry
from salesflow.settings import Settings

_PATH = r"[a-z_][a-z0-9_.]*(?:\[\d+\][a-z0-9_.]*)*"
TAG_PATTERN = re.compile(r"\{\{(" + _PATH + r'(?:\|[a-z_]+(?::"[^"]*")?)*)\}\}', re.IGNORECASE)
_MODIFIER_PATTERN = re.compile(r'^([a-z_]+)(?::"([^"]*)")?$', re.IGNORECASE)
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")
_NUMERIC_FORMAT = re.compile(r"^0*(\.0+)?$")
_NUMERIC_VALUE = re.compile(r"^-?\d+(\.\d+)?$")


class MergeTagEngine:
    """
    Resolves tags against a context mapping whose values are ORM records,
    plain dicts or scalars.
    """

    def __init__(
        self,
        settings: Settings,
        context: Mapping[str, Any] | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._providers = build_providers(settings, clock)
        self._context: dict[str, Any] = dict(context or {})

    @property
    def context(self) -> dict[str, Any]:
        return self._context

    def set_context(self, context: Mapping[str, Any]) -> MergeTagEngine:
        self._context = dict(context)
        return self

    def add_context(self, key: str, value: Any) -> MergeTagEngine:
        self._context[key] = value
        return self

    def resolve(self, text: str) -> str:
        return TAG_PATTERN.sub(lambda m: self._resolve_tag(m.group(1)), text)

    def _resolve_tag(self, tag: str) -> str:
        path, *modifiers = tag.split("|")
        value = self.value_for(path)
        for modifier in modifiers:
            value = apply_modifier(value, modifier)
        return value if value is not None else ""

    def value_for(self, path: str) -> str | None:
        dotted = _INDEX_PATTERN.sub(r".\1", path)
        category, _, field = dotted.partition(".")

        provider = self._providers.get(category)
        if provider is not None:
            return provider.get_value(field, self._context)
        if not field:
            value = self._providers["system"].get_value(category, self._context)
            if value is not None:
                return value
        return self._from_context(dotted)

    def _from_context(self, dotted: str) -> str | None:
        value: Any = self._context
        for segment in dotted.split("."):
            if isinstance(value, Mapping):
                if segment not in value:
                    return None
                value = value[segment]
            elif isinstance(value, (list, tuple)) and segment.isdigit():
                index = int(segment)
                if index >= len(value):
                    return None
                value = value[index]
            elif value is not None and hasattr(value, segment):
                value = getattr(value, segment)
            else:
                return None
        return _scalar_text(value)

    @staticmethod
    def extract_variables(text: str) -> list[str]:
        seen: dict[str, None] = {}
        for match in TAG_PATTERN.finditer(text):
            seen.setdefault(match.group(1).split("|")[0], None)
        return list(seen)

    def validate_for_trigger(self, text: str, trigger_type: str) -> list[dict[str, str]]:
        available = VariableRegistry.variables_for_trigger(trigger_type)
        errors = []
        for variable in self.extract_variables(text):
            if not is_variable_available(variable, available):
                errors.append(
                    {
                        "variable": variable,
                        "message": (
                            f"Variable '{{{{{variable}}}}}' is not available for trigger '{trigger_type}'"
                        ),
                    }
                )
        return errors

    @staticmethod
    def preview(text: str) -> str:
        def _example(match: re.Match[str]) -> str:
            variable = match.group(1).split("|")[0]
            example = VariableRegistry.example_value(variable)
            return example if example is not None else match.group(0)

        return TAG_PATTERN.sub(_example, text)


def is_variable_available(variable: str, available: Mapping[str, Any]) -> bool:
    normalized = _INDEX_PATTERN.sub("", variable)
    for category in available.values():
        for name in category.get("variables", {}):
            if name in (variable, normalized):
                return True
            if "*" in name:
                pattern = re.escape(name).replace(r"\*", r"\d+")
                if re.fullmatch(pattern, _INDEX_PATTERN.sub(r".\1", variable)):
                    return True
    return False


def apply_modifier(value: str | None, modifier: str) -> str | None:
    match = _MODIFIER_PATTERN.match(modifier)
    if match is None:
        return value
    name = match.group(1).lower()
    argument = match.group(2)

    if name == "default":
        return argument if value is None or value == "" else value
    if name == "format":
        return format_value(value, argument)
    if value is None:
        return None
    if name == "upper":
        return value.upper()
    if name == "lower":
        return value.lower()
    if name == "ucfirst":
        return value[:1].upper() + value[1:]
    if name == "trim":
        return value.strip()
    return value


def format_value(value: str | None, pattern: str | None) -> str | None:
    """
    `0.00`-style patterns format numbers; anything else is a date pattern.
    """

    if value is None or not pattern:
        return value
    if _NUMERIC_FORMAT.match(pattern) and _NUMERIC_VALUE.match(value.strip()):
        decimals = len(pattern) - pattern.index(".") - 1 if "." in pattern else 0
        return format_number(value, decimals)
    moment = parse_datetime(value)
    if moment is None:
        return value
    return php_date(moment, pattern)


def _scalar_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float, Decimal)):
        return str(value)
    enum_value = getattr(value, "value", None)
    if isinstance(enum_value, str):
        return enum_value
    return None


# --- Module Notes -----------------------------------------------------------
# Providers are synchronous; services load every relationship a provider reads
# before resolving (see the selectin relationships in `db.models`).
