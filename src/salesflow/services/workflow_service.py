"""
salesflow.services.workflow_service

Workflow lifecycle service (transaction + persistence owner).

Responsibilities:
- Save builder graphs (nodes/edges) as steps and connections, with validation.
- Activate/pause workflows and find the ones listening to a trigger.
- Enroll contacts and execute the LangGraph run with per-node checkpointing.
- Resume branches parked by delay steps and exit enrollments.
- Record entering, completing and leaving a workflow on the contact's timeline.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx
from langgraph.errors import GraphRecursionError
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.actions.base import ActionRuntime
from salesflow.actions.conditions import trigger_conditions_match
from salesflow.actions.registry import ActionRegistry, default_registry
from salesflow.db.models import (
    Contact,
    EnrollmentStatus,
    Workflow,
    WorkflowConnection,
    WorkflowEnrollment,
    WorkflowStatus,
    WorkflowStep,
    WorkflowStepExecution,
    utcnow,
)
from salesflow.db.repositories.workflows import EnrollmentRepo, WorkflowRepo
from salesflow.errors import NotFound, ValidationFailed
from salesflow.mergetags.context import to_jsonable
from salesflow.mergetags.formatting import parse_datetime
from salesflow.observability.logging import get_logger
from salesflow.services.activity_service import ContactActivityService
from salesflow.settings import Settings
from salesflow.workflow.errors import WorkflowStepError
from salesflow.workflow.graph import BRANCHES, STEP_TYPES, WorkflowGraph, build_graph
from salesflow.workflow.nodes import StepExecutor
from salesflow.workflow.state import WorkflowState

log = get_logger(__name__)


class WorkflowService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        http: httpx.AsyncClient,
        registry: ActionRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._settings = settings
        self._http = http
        self._registry = registry or default_registry
        self._clock = clock

        self._workflows = WorkflowRepo(session)
        self._enrollments = EnrollmentRepo(session)
        self._activities = ContactActivityService(session=session, clock=clock)

    # --- Definitions --------------------------------------------------------

    async def get(self, workflow_id: uuid.UUID) -> Workflow:
        workflow = await self._workflows.get(workflow_id)
        if workflow is None:
            raise NotFound("Workflow not found")
        return workflow

    async def list(self, *, status: WorkflowStatus | None = None) -> list[Workflow]:
        return await self._workflows.list(status=status)

    async def enrollments(self, workflow_id: uuid.UUID) -> list[WorkflowEnrollment]:
        await self.get(workflow_id)
        return await self._enrollments.for_workflow(workflow_id)

    async def get_enrollment(self, workflow_id: uuid.UUID, enrollment_id: uuid.UUID) -> WorkflowEnrollment:
        enrollment = await self._enrollments.get(enrollment_id)
        if enrollment is None or enrollment.workflow_id != workflow_id:
            raise NotFound("Enrollment not found")
        return enrollment

    async def executions(self, enrollment: WorkflowEnrollment) -> list[WorkflowStepExecution]:
        return await self._enrollments.executions(enrollment.id)

    async def create(
        self,
        *,
        name: str,
        description: str | None = None,
        trigger_type: str | None = None,
        trigger_config: dict[str, Any] | None = None,
        nodes: list[dict[str, Any]] | None = None,
        edges: list[dict[str, Any]] | None = None,
    ) -> Workflow:
        nodes, edges = list(nodes or []), list(edges or [])
        if nodes:
            self.validate_graph(nodes, edges)
        workflow = Workflow(
            name=name,
            description=description,
            status=WorkflowStatus.draft,
            trigger_type=trigger_type or _trigger_type_of(nodes),
            trigger_config=dict(trigger_config or {}),
            steps=[],
            connections=[],
        )
        await self._workflows.add(workflow)
        await self._sync_graph(workflow, nodes, edges)
        await self._session.commit()
        log.info("workflow_created", workflow_id=str(workflow.id), steps=len(workflow.steps))
        return workflow

    async def update(
        self,
        workflow_id: uuid.UUID,
        *,
        name: str | None = None,
        description: str | None = None,
        trigger_type: str | None = None,
        trigger_config: dict[str, Any] | None = None,
        nodes: list[dict[str, Any]] | None = None,
        edges: list[dict[str, Any]] | None = None,
    ) -> Workflow:
        workflow = await self.get(workflow_id)
        if name is not None:
            workflow.name = name
        if description is not None:
            workflow.description = description
        if trigger_config is not None:
            workflow.trigger_config = dict(trigger_config)
        if nodes is not None:
            edges = list(edges or [])
            self.validate_graph(nodes, edges)
            await self._sync_graph(workflow, nodes, edges)
            if trigger_type is None:
                trigger_type = _trigger_type_of(nodes) or workflow.trigger_type
        if trigger_type is not None:
            workflow.trigger_type = trigger_type
        await self._session.commit()
        return workflow

    async def delete(self, workflow_id: uuid.UUID) -> None:
        workflow = await self.get(workflow_id)
        await self._workflows.delete(workflow)
        await self._session.commit()

    async def activate(self, workflow_id: uuid.UUID) -> Workflow:
        workflow = await self.get(workflow_id)
        errors: dict[str, list[str]] = {}
        if not any(s.type == "trigger" for s in workflow.steps):
            errors.setdefault("nodes", []).append("Workflow must have at least one trigger")
        if not any(s.type == "action" for s in workflow.steps):
            errors.setdefault("nodes", []).append("Workflow must have at least one action")
        if errors:
            raise ValidationFailed(errors)
        workflow.status = WorkflowStatus.active
        await self._session.commit()
        log.info("workflow_activated", workflow_id=str(workflow.id))
        return workflow

    async def pause(self, workflow_id: uuid.UUID) -> Workflow:
        workflow = await self.get(workflow_id)
        workflow.status = WorkflowStatus.paused
        await self._session.commit()
        return workflow

    def validate_graph(self, nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> None:
        errors: dict[str, list[str]] = {}
        types: dict[str, str] = {}

        for i, node in enumerate(nodes):
            node_id = str(node.get("id") or "")
            node_type = str(node.get("type") or "action")
            if not node_id:
                errors.setdefault(f"nodes.{i}.id", []).append("Node id is required.")
                continue
            if node_id in types:
                errors.setdefault(f"nodes.{i}.id", []).append(f"Duplicate node id '{node_id}'.")
            if node_type not in STEP_TYPES:
                errors.setdefault(f"nodes.{i}.type", []).append(f"Unknown node type '{node_type}'.")
            if node_type == "action":
                action_type = _action_type_of(node)
                if not self._registry.has(action_type):
                    errors.setdefault(f"nodes.{i}.data.action_type", []).append(
                        f"Unknown action type: {action_type}"
                    )
            types[node_id] = node_type

        triggers = [nid for nid, t in types.items() if t == "trigger"]
        if len(triggers) != 1:
            errors.setdefault("nodes", []).append("Workflow must have exactly one trigger.")

        for i, edge in enumerate(edges):
            source, target = str(edge.get("source") or ""), str(edge.get("target") or "")
            if source not in types:
                errors.setdefault(f"edges.{i}.source", []).append(f"Unknown node '{source}'.")
            if target not in types:
                errors.setdefault(f"edges.{i}.target", []).append(f"Unknown node '{target}'.")
            handle = _handle_of(edge)
            if types.get(source) == "condition" and handle not in BRANCHES:
                errors.setdefault(f"edges.{i}.source_handle", []).append(
                    "Condition edges must use the 'yes' or 'no' handle."
                )

        if errors:
            raise ValidationFailed(errors)

    async def _sync_graph(
        self, workflow: Workflow, nodes: list[dict[str, Any]], edges: list[dict[str, Any]]
    ) -> None:
        # Steps are matched by builder node id so step ids survive edits.
        workflow.connections = []
        await self._session.flush()

        existing = {s.node_id: s for s in workflow.steps}
        steps: list[WorkflowStep] = []
        for node in nodes:
            data = node.get("data") or {}
            step = existing.get(str(node["id"])) or WorkflowStep(node_id=str(node["id"]))
            step.type = str(node.get("type") or "action")
            step.action_type = _action_type_of(node) or data.get("triggerType") or data.get("trigger_type")
            step.name = data.get("label")
            step.config = dict(data.get("config") or {})
            step.position = dict(node.get("position") or {})
            steps.append(step)
        workflow.steps = steps
        await self._session.flush()

        by_node = {s.node_id: s for s in workflow.steps}
        connections = []
        for edge in edges:
            source, target = by_node.get(str(edge.get("source"))), by_node.get(str(edge.get("target")))
            if source is None or target is None:
                continue
            connections.append(
                WorkflowConnection(
                    source_step_id=source.id, target_step_id=target.id, source_handle=_handle_of(edge)
                )
            )
        workflow.connections = connections
        await self._session.flush()

    # --- Triggers -----------------------------------------------------------

    async def find_workflows_for_trigger(
        self, trigger_type: str, conditions: dict[str, Any] | None = None
    ) -> list[Workflow]:
        workflows = await self._workflows.active_for_trigger(trigger_type)
        return [w for w in workflows if trigger_conditions_match(w.trigger_config, conditions or {})]

    async def trigger(
        self,
        trigger_type: str,
        contact: Contact,
        context: dict[str, Any] | None = None,
        conditions: dict[str, Any] | None = None,
    ) -> list[WorkflowEnrollment]:
        enrollments = []
        for workflow in await self.find_workflows_for_trigger(trigger_type, conditions):
            enrollment = await self.enroll(workflow, contact, context)
            if enrollment is not None:
                enrollments.append(enrollment)
        return enrollments

    # --- Enrollments --------------------------------------------------------

    async def enroll(
        self, workflow: Workflow, contact: Contact, context: dict[str, Any] | None = None
    ) -> WorkflowEnrollment | None:
        if not workflow.is_active:
            return None

        existing = await self._enrollments.open_for_contact(
            workflow_id=workflow.id, contact_id=contact.id
        )
        if existing is not None:
            return existing

        live_context = dict(context or {})
        enrollment = await self._enrollments.create(
            workflow=workflow, contact_id=contact.id, context=to_jsonable(live_context)
        )
        await self._activities.workflow_entered(contact.id, workflow)
        await self._session.commit()
        log.info(
            "workflow_enrolled",
            workflow_id=str(workflow.id),
            enrollment_id=str(enrollment.id),
            contact_id=str(contact.id),
        )

        graph = WorkflowGraph(workflow)
        if graph.trigger is None:
            await self._finish(enrollment)
            await self._session.commit()
            return enrollment

        await self._run(enrollment, graph, graph.entry_steps(), contact=contact, context=live_context)
        return enrollment

    async def resume_due(self, *, now: datetime | None = None) -> int:
        now = now or self._clock()
        resumed = 0
        for enrollment in await self._enrollments.due_for_resume(now=now):
            workflow = enrollment.workflow
            if not workflow.is_active:
                continue

            due, remaining = [], []
            for entry in enrollment.pending_resumes or []:
                resume_at = parse_datetime(entry.get("resume_at"))
                (due if resume_at is not None and resume_at <= now else remaining).append(entry)
            if not due:
                self._schedule_next(enrollment, remaining)
                await self._session.commit()
                continue

            graph = WorkflowGraph(workflow)
            entry_ids: list[str] = []
            for entry in due:
                for sid in entry.get("step_ids", []):
                    if sid in graph.steps and sid not in entry_ids:
                        entry_ids.append(sid)

            enrollment.pending_resumes = remaining
            await self._run(
                enrollment,
                graph,
                entry_ids,
                contact=enrollment.contact,
                context=dict(enrollment.context or {}),
            )
            resumed += 1
        return resumed

    async def exit_enrollment(self, enrollment: WorkflowEnrollment, reason: str = "manual") -> WorkflowEnrollment:
        enrollment.status = EnrollmentStatus.exited
        enrollment.exit_reason = reason
        enrollment.pending_resumes = []
        enrollment.next_resume_at = None
        enrollment.completed_at = self._clock()
        await self._activities.workflow_exited(enrollment.contact_id, enrollment.workflow, reason=reason)
        await self._session.commit()
        log.info("workflow_enrollment_exited", enrollment_id=str(enrollment.id), reason=reason)
        return enrollment

    async def _run(
        self,
        enrollment: WorkflowEnrollment,
        graph: WorkflowGraph,
        entry_ids: list[str],
        *,
        contact: Contact | None,
        context: dict[str, Any],
    ) -> None:
        enrollment.status = EnrollmentStatus.active
        if not entry_ids:
            await self._settle(enrollment)
            await self._session.commit()
            return

        executor = StepExecutor(
            contact=contact,
            context=context,
            runtime=ActionRuntime.build(
                session=self._session, settings=self._settings, http=self._http, clock=self._clock
            ),
            registry=self._registry,
        )
        runnable = build_graph(workflow_graph=graph, entry_ids=entry_ids, executor=executor)
        state: WorkflowState = {
            "enrollment_id": str(enrollment.id),
            "workflow_id": str(enrollment.workflow_id),
            "context": dict(enrollment.context or {}),
            "results": {},
            "executions": [],
            "waits": [],
        }

        try:
            await self._execute_with_checkpoints(runnable, enrollment, state)
        except WorkflowStepError as e:
            await self._enrollments.add_execution(
                enrollment_id=enrollment.id,
                step_id=uuid.UUID(e.step_id),
                status="failed",
                error=e.error,
            )
            await self._fail(enrollment, str(e))
            return
        except GraphRecursionError as e:
            await self._fail(enrollment, f"Step limit exceeded: {e}")
            return

        await self._settle(enrollment)
        await self._session.commit()

    async def _execute_with_checkpoints(
        self, runnable: Any, enrollment: WorkflowEnrollment, state: WorkflowState
    ) -> None:
        """
        Persist every step execution as its node reports (stream_mode='updates').
        """

        config = {"recursion_limit": self._settings.workflow_max_steps}
        async for update in runnable.astream(state, config=config, stream_mode="updates"):
            if not isinstance(update, dict):
                continue
            for node_id, node_update in update.items():
                if not isinstance(node_update, dict):
                    continue
                for execution in node_update.get("executions", []):
                    await self._enrollments.add_execution(
                        enrollment_id=enrollment.id,
                        step_id=uuid.UUID(execution["step_id"]),
                        status=execution["status"],
                        result=to_jsonable(execution.get("result") or {}),
                    )
                waits = node_update.get("waits", [])
                if waits:
                    enrollment.pending_resumes = [*(enrollment.pending_resumes or []), *waits]
                enrollment.current_step_id = uuid.UUID(node_id)
            await self._session.commit()

    async def _settle(self, enrollment: WorkflowEnrollment) -> None:
        pending = list(enrollment.pending_resumes or [])
        if pending:
            enrollment.status = EnrollmentStatus.waiting
            self._schedule_next(enrollment, pending)
        else:
            await self._finish(enrollment)

    def _schedule_next(self, enrollment: WorkflowEnrollment, pending: list[dict[str, Any]]) -> None:
        enrollment.pending_resumes = pending
        moments = [m for m in (parse_datetime(p.get("resume_at")) for p in pending) if m is not None]
        enrollment.next_resume_at = min(moments) if moments else None

    async def _finish(self, enrollment: WorkflowEnrollment) -> None:
        enrollment.status = EnrollmentStatus.completed
        enrollment.pending_resumes = []
        enrollment.next_resume_at = None
        enrollment.completed_at = self._clock()
        await self._activities.workflow_completed(enrollment.contact_id, enrollment.workflow)
        log.info("workflow_enrollment_completed", enrollment_id=str(enrollment.id))

    async def _fail(self, enrollment: WorkflowEnrollment, reason: str) -> None:
        enrollment.status = EnrollmentStatus.failed
        enrollment.exit_reason = reason[:255]
        enrollment.next_resume_at = None
        enrollment.completed_at = self._clock()
        await self._session.commit()
        log.error("workflow_enrollment_failed", enrollment_id=str(enrollment.id), reason=reason)


def _action_type_of(node: dict[str, Any]) -> str | None:
    data = node.get("data") or {}
    value = data.get("actionType") or data.get("action_type")
    return str(value) if value else None


def _trigger_type_of(nodes: list[dict[str, Any]]) -> str | None:
    for node in nodes:
        if node.get("type") == "trigger":
            data = node.get("data") or {}
            value = data.get("triggerType") or data.get("trigger_type")
            return str(value) if value else None
    return None


def _handle_of(edge: dict[str, Any]) -> str | None:
    value = edge.get("sourceHandle", edge.get("source_handle"))
    return str(value) if value else None


# --- Module Notes -----------------------------------------------------------
# This service is the transaction boundary for workflow runs: it commits after
# each streamed node update, so executions survive a crash mid-run.
