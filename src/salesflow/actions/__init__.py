"""
salesflow.actions

Actions run by funnel automations and workflow action steps.
"""

from __future__ import annotations

from salesflow.actions.base import ActionContext, ActionRuntime
from salesflow.actions.registry import ActionRegistry, default_registry

__all__ = ["ActionContext", "ActionRegistry", "ActionRuntime", "default_registry"]
