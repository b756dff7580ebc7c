"""
salesflow.workflow.state

Typed state schema for one workflow run.

Responsibilities:
- Define the contract between step nodes (inputs/outputs).
- Keep the shape JSON-safe; records are held by the step executor, not the state.
"""

from __future__ import annotations

from typing import Annotated, Any, TypedDict

from salesflow.workflow.reducers import append_entries, merge_dicts


class WorkflowState(TypedDict, total=False):
    # Identifiers
    enrollment_id: str
    workflow_id: str

    # Enrollment context (JSON snapshot), readable by conditions
    context: dict[str, Any]

    # step id -> handler/condition/delay result
    results: Annotated[dict[str, Any], merge_dicts]

    # [{"step_id", "status", "result"}] in completion order
    executions: Annotated[list[dict[str, Any]], append_entries]

    # Branches parked by delay steps: [{"resume_at", "step_ids", "delay_step_id"}]
    waits: Annotated[list[dict[str, Any]], append_entries]


# --- Module Notes -----------------------------------------------------------
# Nodes return partial updates only; the service persists each node's update as it
# arrives from `astream(stream_mode="updates")`.
