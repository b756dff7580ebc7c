"""
salesflow.actions.registry

Action type -> handler dispatch.

Responsibilities:
- Hold the registered handlers (built-ins by default).
- Execute an action by type; unknown types produce a failed result instead of raising.
"""

from __future__ import annotations

from typing import Any

from salesflow.actions import handlers
from salesflow.actions.base import ActionContext, ActionHandler, ActionResult, ActionRuntime

BUILTIN_HANDLERS: dict[str, ActionHandler] = {
    "send_whatsapp": handlers.send_whatsapp,
    "send_email": handlers.send_email,
    "webhook": handlers.webhook,
    "add_tag": handlers.add_tag,
    "remove_tag": handlers.remove_tag,
    "update_field": handlers.update_field,
    "add_score": handlers.add_score,
}


class ActionRegistry:
    def __init__(self, handlers_by_type: dict[str, ActionHandler] | None = None) -> None:
        self._handlers = dict(BUILTIN_HANDLERS if handlers_by_type is None else handlers_by_type)

    def register(self, action_type: str, handler: ActionHandler) -> None:
        self._handlers[action_type] = handler

    def has(self, action_type: str | None) -> bool:
        return action_type is not None and action_type in self._handlers

    @property
    def types(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(
        self,
        action_type: str,
        config: dict[str, Any] | None,
        ctx: ActionContext,
        rt: ActionRuntime,
    ) -> ActionResult:
        handler = self._handlers.get(action_type)
        if handler is None:
            return {"success": False, "message": f"Unknown action type: {action_type}"}
        return await handler(dict(config or {}), ctx, rt)


default_registry = ActionRegistry()
