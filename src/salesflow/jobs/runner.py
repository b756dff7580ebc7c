"""
salesflow.jobs.runner

Runs the periodic tasks against an app's shared infrastructure.

Responsibilities:
- Open one session per task so a failing task does not roll back the others.
- Report how many records each task touched.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import FastAPI

from salesflow.clients.payment_gateway import PaymentGatewayClient
from salesflow.db.session import session_scope
from salesflow.observability.logging import get_logger, job_context
from salesflow.services.automation_service import AutomationService
from salesflow.services.checkout_service import CheckoutService
from salesflow.services.workflow_service import WorkflowService

log = get_logger(__name__)

TASKS = ("abandoned-carts", "scheduled-actions", "workflow-resumes")


async def run_task(app: FastAPI, task: str, *, now: datetime | None = None) -> int:
    state: Any = app.state
    settings = state.settings
    async with session_scope(state.sessionmaker) as session:
        if task == "abandoned-carts":
            gateway = PaymentGatewayClient(settings=settings, http=state.gateway_http)
            checkout = CheckoutService(session=session, settings=settings, http=state.http, gateway=gateway)
            return await checkout.detect_abandoned_carts(now=now)
        if task == "scheduled-actions":
            automations = AutomationService(session=session, settings=settings, http=state.http)
            return await automations.process_scheduled_actions(now=now)
        if task == "workflow-resumes":
            workflows = WorkflowService(session=session, settings=settings, http=state.http)
            return await workflows.resume_due(now=now)
    raise ValueError(f"Unknown task: {task}")


async def run_tasks(app: FastAPI, tasks: list[str], *, now: datetime | None = None) -> dict[str, int]:
    results: dict[str, int] = {}
    for task in tasks:
        with job_context(task):
            count = await run_task(app, task, now=now)
            log.info("job_completed", processed=count)
        results[task] = count
    return results
