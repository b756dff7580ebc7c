"""
salesflow.workflow.graph

Compiles a stored workflow (steps + connections) into a LangGraph runnable.

Responsibilities:
- One node per step reachable from the entry steps of this run.
- Plain edges for action steps, yes/no conditional edges for condition steps.
- Delay steps end their branch; their successors become the entry steps of a later run.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from functools import partial
from typing import Any

from langgraph.graph import END, START, StateGraph

from salesflow.db.models import Workflow, WorkflowStep
from salesflow.workflow.nodes import (
    StepExecutor,
    action_node,
    condition_node,
    delay_node,
    route_condition,
)
from salesflow.workflow.state import WorkflowState

STEP_TYPES = ("trigger", "action", "condition", "delay")
BRANCHES = ("yes", "no")


class WorkflowGraph:
    """
    Adjacency view over a workflow's steps, keyed by step id (as str).
    """

    def __init__(self, workflow: Workflow) -> None:
        self.steps: dict[str, WorkflowStep] = {str(s.id): s for s in workflow.steps}
        self._edges: dict[str, list[tuple[str, str | None]]] = {sid: [] for sid in self.steps}
        for conn in workflow.connections:
            source, target = str(conn.source_step_id), str(conn.target_step_id)
            if source in self.steps and target in self.steps:
                self._edges[source].append((target, conn.source_handle))

    @property
    def trigger(self) -> WorkflowStep | None:
        return next((s for s in self.steps.values() if s.type == "trigger"), None)

    def successors(self, step_id: str, *, handle: str | None = None) -> list[str]:
        out = []
        for target, source_handle in self._edges.get(step_id, []):
            if handle is not None and source_handle != handle:
                continue
            if self.steps[target].type == "trigger":
                continue
            if target not in out:
                out.append(target)
        return out

    def entry_steps(self) -> list[str]:
        trigger = self.trigger
        return self.successors(str(trigger.id)) if trigger is not None else []

    def reachable(self, entry_ids: Iterable[str]) -> list[str]:
        """
        Steps this run can execute: walk from the entry steps, stopping at delays.
        """

        seen: list[str] = []
        queue = deque(sid for sid in entry_ids if sid in self.steps)
        while queue:
            sid = queue.popleft()
            if sid in seen:
                continue
            seen.append(sid)
            if self.steps[sid].type == "delay":
                continue
            queue.extend(self.successors(sid))
        return seen


def build_graph(*, workflow_graph: WorkflowGraph, entry_ids: list[str], executor: StepExecutor):
    """
    Returns a compiled LangGraph runnable for one run of the workflow.
    """

    graph = StateGraph(WorkflowState)
    node_ids = workflow_graph.reachable(entry_ids)

    for sid in node_ids:
        step = workflow_graph.steps[sid]
        if step.type == "condition":
            graph.add_node(sid, _bind_step(condition_node, step, executor))
        elif step.type == "delay":
            fn = partial(delay_node, successors=workflow_graph.successors(sid))
            graph.add_node(sid, _bind_step(fn, step, executor))
        else:
            graph.add_node(sid, _bind_step(action_node, step, executor))

    for sid in entry_ids:
        if sid in node_ids:
            graph.add_edge(START, sid)

    for sid in node_ids:
        step = workflow_graph.steps[sid]
        if step.type == "delay":
            graph.add_edge(sid, END)
        elif step.type == "condition":
            branches = {b: workflow_graph.successors(sid, handle=b) for b in BRANCHES}
            targets = {t: t for ts in branches.values() for t in ts}
            graph.add_conditional_edges(
                sid,
                _bind_router(step, branches),
                {**targets, END: END},
            )
        else:
            successors = workflow_graph.successors(sid)
            if not successors:
                graph.add_edge(sid, END)
            for target in successors:
                graph.add_edge(sid, target)

    return graph.compile()


def _bind_step(
    fn: Callable[..., Awaitable[WorkflowState]],
    step: WorkflowStep,
    executor: StepExecutor,
) -> Callable[[WorkflowState], Awaitable[WorkflowState]]:
    async def _wrapped(state: WorkflowState) -> WorkflowState:
        return await fn(state, step=step, executor=executor)

    return _wrapped


def _bind_router(step: WorkflowStep, branches: dict[str, list[str]]) -> Callable[[WorkflowState], Any]:
    def _route(state: WorkflowState) -> list[str]:
        return route_condition(state, step=step, branches=branches) or [END]

    return _route


# --- Module Notes -----------------------------------------------------------
# Cycles in a stored workflow are bounded by the run's recursion limit
# (`workflow_max_steps`); hitting it fails the enrollment.
