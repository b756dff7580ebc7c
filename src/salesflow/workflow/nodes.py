"""
salesflow.workflow.nodes

Step node implementations for the workflow graph.

Responsibilities:
- Action steps: dispatch to the action registry with the enrollment's contact.
- Condition steps: compare a contact field and pick the `yes`/`no` branch.
- Delay steps: park the branch and report when its successors should run.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from salesflow.actions.base import ActionContext, ActionRuntime
from salesflow.actions.conditions import contact_field, evaluate_condition
from salesflow.actions.registry import ActionRegistry
from salesflow.db.models import Contact, WorkflowStep
from salesflow.workflow.errors import WorkflowStepError
from salesflow.workflow.state import WorkflowState

DELAY_UNITS = {
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
    "weeks": timedelta(weeks=1),
}


class StepExecutor:
    """
    Per-run collaborators for the nodes: the contact record, the live merge
    context and the action runtime. Kept out of the graph state.
    """

    def __init__(
        self,
        *,
        contact: Contact | None,
        context: dict[str, Any],
        runtime: ActionRuntime,
        registry: ActionRegistry,
    ) -> None:
        self.contact = contact
        self.context = context
        self.runtime = runtime
        self.registry = registry

    def action_context(self) -> ActionContext:
        return ActionContext(data=dict(self.context), contact=self.contact)


def _completed(step: WorkflowStep, result: dict[str, Any]) -> WorkflowState:
    sid = str(step.id)
    return {
        "results": {sid: result},
        "executions": [{"step_id": sid, "status": "completed", "result": result}],
    }


async def action_node(
    state: WorkflowState, *, step: WorkflowStep, executor: StepExecutor
) -> WorkflowState:
    action_type = step.action_type or str((step.config or {}).get("action_type") or "")
    try:
        result = await executor.registry.execute(
            action_type, step.config, executor.action_context(), executor.runtime
        )
    except Exception as e:
        raise WorkflowStepError(step_id=str(step.id), error=str(e)) from e
    return _completed(step, result)


async def condition_node(
    state: WorkflowState, *, step: WorkflowStep, executor: StepExecutor
) -> WorkflowState:
    config = step.config or {}
    field = str(config.get("field") or "")
    if not field:
        # Nothing to compare: take the "no" branch.
        met = False
    else:
        actual = contact_field(executor.contact, field)
        met = evaluate_condition(actual, str(config.get("operator") or "equals"), config.get("value"))
    return _completed(step, {"success": True, "result": met, "branch": "yes" if met else "no"})


def delay_for(config: dict[str, Any]) -> timedelta:
    try:
        amount = int(config.get("delay", 1))
    except (TypeError, ValueError):
        amount = 1
    unit = DELAY_UNITS.get(str(config.get("unit") or "hours"), DELAY_UNITS["hours"])
    return unit * max(amount, 0)


async def delay_node(
    state: WorkflowState,
    *,
    step: WorkflowStep,
    executor: StepExecutor,
    successors: list[str],
) -> WorkflowState:
    delta = delay_for(step.config or {})
    resume_at = executor.runtime.clock() + delta
    result = {
        "success": True,
        "delay_seconds": int(delta.total_seconds()),
        "resume_at": resume_at.isoformat(),
    }
    update = _completed(step, result)
    if successors:
        update["waits"] = [
            {
                "resume_at": resume_at.isoformat(),
                "step_ids": list(successors),
                "delay_step_id": str(step.id),
            }
        ]
    return update


def route_condition(state: WorkflowState, *, step: WorkflowStep, branches: dict[str, list[str]]) -> list[str]:
    result = state.get("results", {}).get(str(step.id), {})
    return branches.get(str(result.get("branch") or "no"), [])
