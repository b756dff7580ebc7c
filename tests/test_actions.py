"""
tests.test_actions

Action handlers and the outbound senders behind them. Gateway traffic is served by
httpx.MockTransport; SMTP is replaced at the aiosmtplib boundary.
"""

from __future__ import annotations

import json

import httpx
import pytest

from salesflow.actions.base import ActionContext, ActionRuntime
from salesflow.actions.registry import default_registry
from salesflow.clients.whatsapp import format_phone
from salesflow.db.models import Contact
from salesflow.db.repositories.automations import MessageTemplateRepo
from salesflow.settings import Settings


def _settings(**overrides) -> Settings:
    return Settings(env="test", company_name="Acme Academy", **overrides)


def _runtime(session, settings: Settings, handler) -> ActionRuntime:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ActionRuntime.build(session=session, settings=settings, http=http)


def _contact(**overrides) -> Contact:
    values = {"name": "Aina Zahra", "email": "aina@example.com", "phone": "012-345 6789", "tags": [], "fields": {}}
    values.update(overrides)
    return Contact(**values)


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("012-345 6789", "60123456789"),
        ("+60 12 345 6789", "60123456789"),
        ("123456789", "60123456789"),
        ("60123456789", "60123456789"),
    ],
)
def test_format_phone(raw, expected) -> None:
    assert format_phone(raw) == expected


@pytest.mark.asyncio
async def test_whatsapp_template_is_resolved_and_posted(app) -> None:
    sent: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(200, json={"success": True, "message_id": "m-1"})

    settings = _settings(whatsapp_api_url="https://wa.example.com/api/", whatsapp_api_token="tok", whatsapp_device_id="dev-1")
    async with app.state.sessionmaker() as session:
        template = await MessageTemplateRepo(session).create(
            name="Welcome", body="Hi {{contact.first_name}}, welcome to {{company_name}}!"
        )
        rt = _runtime(session, settings, handler)
        result = await default_registry.execute(
            "send_whatsapp", {"template_id": str(template.id)}, ActionContext(contact=_contact()), rt
        )

    assert result == {
        "success": True,
        "message": "WhatsApp message sent successfully",
        "phone": "60123456789",
        "message_id": "m-1",
        "delivered": True,
    }
    (request,) = sent
    assert str(request.url) == "https://wa.example.com/api/send"
    assert request.headers["Authorization"] == "Bearer tok"
    assert json.loads(request.content) == {
        "phone": "60123456789",
        "message": "Hi Aina, welcome to Acme Academy!",
        "device_id": "dev-1",
    }


@pytest.mark.asyncio
async def test_whatsapp_gateway_errors_are_reported(app) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"success": False, "message": "device offline"})

    settings = _settings(whatsapp_api_url="https://wa.example.com/api", whatsapp_api_token="tok")
    async with app.state.sessionmaker() as session:
        rt = _runtime(session, settings, handler)
        result = await default_registry.execute("send_whatsapp", {"message": "Hi"}, ActionContext(contact=_contact()), rt)
        missing = await default_registry.execute(
            "send_whatsapp", {"message": "Hi"}, ActionContext(contact=_contact(phone=None)), rt
        )

    assert result["success"] is False
    assert result["error"] == "device offline"
    assert missing == {"success": False, "message": "No phone number found for contact"}


@pytest.mark.asyncio
async def test_unconfigured_senders_report_undelivered(app) -> None:
    async with app.state.sessionmaker() as session:
        rt = _runtime(session, _settings(), _unreachable)
        ctx = ActionContext(contact=_contact())
        whatsapp = await default_registry.execute("send_whatsapp", {"message": "Hi"}, ctx, rt)
        email = await default_registry.execute("send_email", {"subject": "Hi {{contact.first_name}}", "body": "x"}, ctx, rt)

    assert whatsapp["success"] is True
    assert whatsapp["delivered"] is False
    assert email == {"success": True, "email": "aina@example.com", "delivered": False}


@pytest.mark.asyncio
async def test_email_is_sent_over_smtp(app, monkeypatch) -> None:
    captured: dict = {}

    async def fake_send(message, **kwargs):
        captured["message"] = message
        captured.update(kwargs)

    monkeypatch.setattr("salesflow.clients.mailer.aiosmtplib.send", fake_send)
    settings = _settings(smtp_host="smtp.example.com", smtp_username="mailer", smtp_password="secret")
    async with app.state.sessionmaker() as session:
        rt = _runtime(session, settings, _unreachable)
        result = await default_registry.execute(
            "send_email",
            {"subject": "Order {{order.number}}", "body": "Thanks {{contact.first_name}}"},
            ActionContext(data={"order": {"order_number": "PO-1"}}, contact=_contact()),
            rt,
        )

    assert result == {"success": True, "email": "aina@example.com", "delivered": True}
    message = captured["message"]
    assert message["To"] == "aina@example.com"
    assert message["Subject"] == "Order PO-1"
    assert captured["hostname"] == "smtp.example.com"
    assert captured["username"] == "mailer"


@pytest.mark.asyncio
async def test_webhook_posts_json_context(app) -> None:
    received: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(202, json={"ok": True})

    async with app.state.sessionmaker() as session:
        rt = _runtime(session, _settings(), handler)
        result = await default_registry.execute(
            "webhook",
            {"url": "https://hooks.example.com/in", "headers": {"X-Key": "abc"}},
            ActionContext(data={"order": {"order_number": "PO-1", "total": "10.00"}}),
            rt,
        )

    assert result == {"success": True, "status_code": 202, "response": {"ok": True}}
    (request,) = received
    assert request.method == "POST"
    assert request.headers["X-Key"] == "abc"
    assert json.loads(request.content) == {"order": {"order_number": "PO-1", "total": "10.00"}}


@pytest.mark.asyncio
async def test_webhook_transport_failure(app) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with app.state.sessionmaker() as session:
        rt = _runtime(session, _settings(), handler)
        result = await default_registry.execute("webhook", {"url": "https://hooks.example.com"}, ActionContext(), rt)
        missing = await default_registry.execute("webhook", {}, ActionContext(), rt)

    assert result["success"] is False
    assert result["message"].startswith("Webhook request failed")
    assert missing == {"success": False, "message": "No webhook URL configured"}


@pytest.mark.asyncio
async def test_contact_update_actions(app) -> None:
    contact = _contact(tags=["lead"], score=1)
    ctx = ActionContext(data={"order": {"order_number": "PO-9"}}, contact=contact)
    async with app.state.sessionmaker() as session:
        rt = _runtime(session, _settings(), _unreachable)
        await default_registry.execute("add_tag", {"tag": "buyer"}, ctx, rt)
        await default_registry.execute("add_tag", {"tag": "buyer"}, ctx, rt)
        await default_registry.execute("remove_tag", {"tag_name": "lead"}, ctx, rt)
        await default_registry.execute("update_field", {"field": "last_order", "value": "{{order.number}}"}, ctx, rt)
        await default_registry.execute("update_field", {"field": "name", "value": "Aina Z"}, ctx, rt)
        scored = await default_registry.execute("add_score", {"points": "5"}, ctx, rt)
        bad = await default_registry.execute("add_score", {"points": "lots"}, ctx, rt)
        unknown = await default_registry.execute("send_fax", {}, ctx, rt)

    assert contact.tags == ["buyer"]
    assert contact.fields == {"last_order": "PO-9"}
    assert contact.name == "Aina Z"
    assert scored == {"success": True, "points": 5, "score": 6}
    assert bad["success"] is False
    assert unknown == {"success": False, "message": "Unknown action type: send_fax"}
