"""
tests.test_workflows

Workflow graph validation, activation, enrollment through an opt-in, condition
branches, delays and resumption.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from salesflow.actions.registry import BUILTIN_HANDLERS, ActionRegistry
from salesflow.db.models import Contact, EnrollmentStatus, utcnow
from salesflow.jobs.runner import run_task
from salesflow.services.workflow_service import WorkflowService

NODES = [
    {"id": "t1", "type": "trigger", "data": {"label": "Opt-in", "triggerType": "optin_submitted"}},
    {"id": "a1", "type": "action", "data": {"label": "Tag lead", "actionType": "add_tag", "config": {"tag": "lead"}}},
    {
        "id": "c1",
        "type": "condition",
        "data": {"label": "Example domain?", "config": {"field": "email", "operator": "ends_with", "value": "@example.com"}},
    },
    {"id": "d1", "type": "delay", "data": {"label": "Wait", "config": {"delay": 1, "unit": "days"}}},
    {"id": "a2", "type": "action", "data": {"label": "Score", "actionType": "add_score", "config": {"points": 10}}},
    {"id": "a3", "type": "action", "data": {"label": "Other", "actionType": "add_tag", "config": {"tag": "other"}}},
]
EDGES = [
    {"source": "t1", "target": "a1"},
    {"source": "a1", "target": "c1"},
    {"source": "c1", "target": "d1", "sourceHandle": "yes"},
    {"source": "c1", "target": "a3", "sourceHandle": "no"},
    {"source": "d1", "target": "a2"},
]


async def _workflow(client, auth, **overrides) -> dict:
    body = {"name": "Lead nurture", "nodes": NODES, "edges": EDGES}
    body.update(overrides)
    r = await client.post("/api/v1/workflows", json=body, headers=auth("marketer"))
    assert r.status_code == 201, r.text
    return r.json()["data"]


@pytest.mark.asyncio
async def test_graph_validation(client, auth) -> None:
    headers = auth("marketer")
    two_triggers = [*NODES, {"id": "t2", "type": "trigger", "data": {"triggerType": "purchase_completed"}}]
    r = await client.post("/api/v1/workflows", json={"name": "x", "nodes": two_triggers, "edges": []}, headers=headers)
    assert r.status_code == 422
    assert r.json()["errors"]["nodes"] == ["Workflow must have exactly one trigger."]

    bad = [
        NODES[0],
        {"id": "a1", "type": "action", "data": {"actionType": "send_fax"}},
        NODES[2],
    ]
    edges = [{"source": "t1", "target": "zz"}, {"source": "c1", "target": "a1", "sourceHandle": "maybe"}]
    r = await client.post("/api/v1/workflows", json={"name": "x", "nodes": bad, "edges": edges}, headers=headers)
    errors = r.json()["errors"]
    assert errors["nodes.1.data.action_type"] == ["Unknown action type: send_fax"]
    assert errors["edges.0.target"] == ["Unknown node 'zz'."]
    assert errors["edges.1.source_handle"] == ["Condition edges must use the 'yes' or 'no' handle."]


@pytest.mark.asyncio
async def test_create_round_trips_builder_graph(client, auth) -> None:
    workflow = await _workflow(client, auth)
    assert workflow["status"] == "draft"
    assert workflow["trigger_type"] == "optin_submitted"
    assert [n["id"] for n in workflow["nodes"]] == ["t1", "a1", "c1", "d1", "a2", "a3"]
    assert workflow["nodes"][0]["data"]["trigger_type"] == "optin_submitted"
    assert {(e["source"], e["target"], e["sourceHandle"]) for e in workflow["edges"]} >= {("c1", "d1", "yes")}

    # Re-saving keeps step identity by node id.
    r = await client.put(
        f"/api/v1/workflows/{workflow['id']}",
        json={"name": "Renamed", "nodes": NODES[:2], "edges": EDGES[:1]},
        headers=auth("marketer"),
    )
    updated = r.json()["data"]
    assert updated["name"] == "Renamed"
    assert [n["id"] for n in updated["nodes"]] == ["t1", "a1"]


@pytest.mark.asyncio
async def test_activation_requires_trigger_and_action(client, auth) -> None:
    workflow = await _workflow(client, auth, nodes=[NODES[0]], edges=[])
    r = await client.post(f"/api/v1/workflows/{workflow['id']}/publish", headers=auth("marketer"))
    assert r.status_code == 422
    assert r.json()["errors"]["nodes"] == ["Workflow must have at least one action"]


@pytest.mark.asyncio
async def test_optin_enrolls_and_delay_resumes(app, client, auth, build_funnel) -> None:
    headers = auth("marketer")
    workflow = await _workflow(client, auth)
    r = await client.post(f"/api/v1/workflows/{workflow['id']}/publish", headers=headers)
    assert r.json()["data"]["status"] == "active"

    built = await build_funnel()
    slug = built["funnel"]["slug"]
    session_id = (await client.post(f"/api/v1/public/funnels/{slug}/sessions")).json()["data"]["id"]
    r = await client.post(
        f"/api/v1/public/funnels/{slug}/optin",
        json={"step_id": built["steps"]["landing"]["id"], "email": "lead@example.com", "name": "Lee", "session_id": session_id},
    )
    assert r.json() == {"success": True, "redirect_url": f"/f/{slug}/checkout"}

    enrollments = (await client.get(f"/api/v1/workflows/{workflow['id']}/enrollments", headers=headers)).json()["data"]
    assert len(enrollments) == 1
    enrollment = enrollments[0]
    assert enrollment["status"] == "waiting"
    assert enrollment["next_resume_at"] is not None

    contact = (await client.get(f"/api/v1/contacts/{enrollment['contact_id']}", headers=headers)).json()["data"]
    assert contact["tags"] == ["lead"]
    assert contact["score"] == 0

    # A second opt-in while waiting reuses the open enrollment.
    await client.post(
        f"/api/v1/public/funnels/{slug}/optin",
        json={"step_id": built["steps"]["landing"]["id"], "email": "lead@example.com"},
    )
    enrollments = (await client.get(f"/api/v1/workflows/{workflow['id']}/enrollments", headers=headers)).json()["data"]
    assert len(enrollments) == 1

    assert await run_task(app, "workflow-resumes") == 0
    assert await run_task(app, "workflow-resumes", now=utcnow() + timedelta(days=2)) == 1

    detail = (
        await client.get(f"/api/v1/workflows/{workflow['id']}/enrollments/{enrollment['id']}", headers=headers)
    ).json()["data"]
    assert detail["status"] == "completed"
    assert len(detail["executions"]) == 4
    assert all(x["status"] == "completed" for x in detail["executions"])

    contact = (await client.get(f"/api/v1/contacts/{enrollment['contact_id']}", headers=headers)).json()["data"]
    assert contact["score"] == 10
    assert contact["tags"] == ["lead"]

    stats = (await client.get(f"/api/v1/workflows/{workflow['id']}/stats", headers=headers)).json()["data"]
    assert stats["total_enrolled"] == 1
    assert stats["completed"] == 1


@pytest.mark.asyncio
async def test_no_branch_and_manual_exit(client, auth, build_funnel) -> None:
    headers = auth("marketer")
    workflow = await _workflow(client, auth)
    await client.post(f"/api/v1/workflows/{workflow['id']}/publish", headers=headers)

    built = await build_funnel()
    slug = built["funnel"]["slug"]
    await client.post(
        f"/api/v1/public/funnels/{slug}/optin",
        json={"step_id": built["steps"]["landing"]["id"], "email": "someone@elsewhere.org"},
    )
    enrollment = (await client.get(f"/api/v1/workflows/{workflow['id']}/enrollments", headers=headers)).json()["data"][0]
    assert enrollment["status"] == "completed"
    contact = (await client.get(f"/api/v1/contacts/{enrollment['contact_id']}", headers=headers)).json()["data"]
    assert contact["tags"] == ["lead", "other"]

    r = await client.post(
        f"/api/v1/workflows/{workflow['id']}/enrollments/{enrollment['id']}/exit",
        json={"reason": "unsubscribed"},
        headers=headers,
    )
    assert r.json()["data"]["status"] == "exited"
    assert r.json()["data"]["exit_reason"] == "unsubscribed"


@pytest.mark.asyncio
async def test_paused_workflow_does_not_enroll(client, auth, build_funnel) -> None:
    headers = auth("marketer")
    workflow = await _workflow(client, auth)
    await client.post(f"/api/v1/workflows/{workflow['id']}/publish", headers=headers)
    r = await client.post(f"/api/v1/workflows/{workflow['id']}/pause", headers=headers)
    assert r.json()["data"]["status"] == "paused"

    built = await build_funnel()
    await client.post(
        f"/api/v1/public/funnels/{built['funnel']['slug']}/optin",
        json={"step_id": built["steps"]["landing"]["id"], "email": "lead@example.com"},
    )
    assert (await client.get(f"/api/v1/workflows/{workflow['id']}/enrollments", headers=headers)).json()["data"] == []

    listed = (await client.get("/api/v1/workflows", params={"status": "paused"}, headers=headers)).json()["data"]
    assert [w["id"] for w in listed] == [workflow["id"]]
    assert (await client.get("/api/v1/workflows", params={"status": "bogus"}, headers=headers)).status_code == 422


async def _explode(config, ctx, rt):
    raise RuntimeError("kaboom")


async def _enroll_with(app, registry: ActionRegistry, nodes: list[dict], edges: list[dict]):
    async with app.state.sessionmaker() as session:
        service = WorkflowService(
            session=session, settings=app.state.settings, http=app.state.http, registry=registry
        )
        workflow = await service.create(name="Direct", nodes=nodes, edges=edges)
        await service.activate(workflow.id)
        contact = Contact(name="Lee", email="lee@example.com", tags=[], fields={})
        session.add(contact)
        await session.commit()

        enrollment = await service.enroll(workflow, contact)
        executions = await service.executions(enrollment)
        return enrollment, executions


@pytest.mark.asyncio
async def test_raising_handler_records_failed_step(app) -> None:
    registry = ActionRegistry({**BUILTIN_HANDLERS, "boom": _explode})
    nodes = [
        NODES[0],
        NODES[1],
        {"id": "x1", "type": "action", "data": {"label": "Explode", "actionType": "boom"}},
        {"id": "a9", "type": "action", "data": {"actionType": "add_score", "config": {"points": 1}}},
    ]
    edges = [{"source": "t1", "target": "a1"}, {"source": "a1", "target": "x1"}, {"source": "x1", "target": "a9"}]

    enrollment, executions = await _enroll_with(app, registry, nodes, edges)

    assert enrollment.status == EnrollmentStatus.failed
    assert "kaboom" in enrollment.exit_reason
    assert enrollment.completed_at is not None
    assert [(x.status, x.error) for x in executions] == [("completed", None), ("failed", "kaboom")]


@pytest.mark.asyncio
async def test_cycle_stops_at_step_limit(app, settings) -> None:
    nodes = [
        NODES[0],
        {"id": "a", "type": "action", "data": {"actionType": "add_score", "config": {"points": 1}}},
        {"id": "b", "type": "action", "data": {"actionType": "add_score", "config": {"points": 1}}},
    ]
    edges = [{"source": "t1", "target": "a"}, {"source": "a", "target": "b"}, {"source": "b", "target": "a"}]

    enrollment, executions = await _enroll_with(app, ActionRegistry(), nodes, edges)

    assert enrollment.status == EnrollmentStatus.failed
    assert enrollment.exit_reason.startswith("Step limit exceeded")
    assert len(executions) == settings.workflow_max_steps
    assert all(x.status == "completed" for x in executions)
