"""Tests for the built-in action handlers."""

import json

import pytest
import requests

from automation_engine.actions.builtin import ContactActions, WebhookAction, send_email, wait
from automation_engine.core.exceptions import ActionError, NotFoundError


def make_response(status_code=200, payload=None, text=None):
    response = requests.Response()
    response.status_code = status_code
    response.url = "https://hooks.example.com/in"
    response.reason = "Error" if status_code >= 400 else "OK"
    if payload is not None:
        response._content = json.dumps(payload).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    else:
        response._content = (text or "").encode("utf-8")
    return response


class FakeSession:
    """Records requests and answers them with a canned response."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.response


class TestSendEmail:

    def test_renders_templates(self):
        output = send_email(
            {"to": "{{contact.email}}", "subject": "Welcome {{contact.name}}", "body": "Hi"},
            {"contact": {"email": "ada@example.com", "name": "Ada"}}
        )
        assert output == {
            "email_sent": True,
            "email_data": {"to": "ada@example.com", "subject": "Welcome Ada", "body": "Hi"},
        }

    def test_requires_recipient(self):
        with pytest.raises(ActionError, match="requires 'to'"):
            send_email({"subject": "x"}, {})


class TestContacts:

    @pytest.fixture
    def contacts(self, store):
        return ContactActions(store)

    def test_create_contact(self, contacts, store):
        output = contacts.create_contact(
            {"email": "{{email}}", "first_name": "{{first}}"},
            {"email": "lin@example.com", "first": "Lin"}
        )

        assert output["contact_created"] is True
        stored = store.get_contact(output["contact_id"])
        assert stored["email"] == "lin@example.com"
        assert stored["first_name"] == "Lin"

    def test_create_requires_email(self, contacts):
        with pytest.raises(ActionError):
            contacts.create_contact({"first_name": "Lin"}, {})

    def test_update_contact(self, contacts, store):
        contact = store.create_contact({"email": "lin@example.com"})

        output = contacts.update_contact(
            {"contact_id": "{{id}}", "updates": {"last_name": "{{last}}", "tier": "gold"}},
            {"id": contact["id"], "last": "Wu"}
        )

        assert output["update_data"]["updates"] == {"last_name": "Wu", "tier": "gold"}
        stored = store.get_contact(contact["id"])
        assert stored["last_name"] == "Wu"
        assert stored["attributes"] == {"tier": "gold"}

    def test_update_missing_contact(self, contacts):
        with pytest.raises(NotFoundError):
            contacts.update_contact({"contact_id": "contact_missing", "updates": {"phone": "1"}}, {})

    def test_updates_must_be_an_object(self, contacts):
        with pytest.raises(ActionError, match="must be an object"):
            contacts.update_contact({"contact_id": "c1", "updates": ["phone"]}, {})


class TestWebhook:

    def test_posts_input_by_default(self):
        session = FakeSession(make_response(200, {"ok": True}))
        action = WebhookAction(timeout_seconds=3.0, session=session)

        output = action({"url": "https://hooks.example.com/{{path}}"}, {"path": "in", "score": 5})

        method, url, kwargs = session.calls[0]
        assert method == "POST"
        assert url == "https://hooks.example.com/in"
        assert kwargs["json"] == {"path": "in", "score": 5}
        assert kwargs["timeout"] == 3.0
        assert output == {"webhook_sent": True, "webhook_response": {"status": 200, "body": {"ok": True}}}

    def test_get_sends_no_body(self):
        session = FakeSession(make_response(200, text="pong"))
        action = WebhookAction(session=session)

        output = action({"url": "https://hooks.example.com/ping", "method": "get", "headers": {"X-Id": "{{id}}"}}, {"id": 7})

        method, _, kwargs = session.calls[0]
        assert method == "GET"
        assert "json" not in kwargs
        assert kwargs["headers"] == {"X-Id": "7"}
        assert output["webhook_response"]["body"] == "pong"

    def test_explicit_body_is_interpolated(self):
        session = FakeSession(make_response(201, {}))
        action = WebhookAction(session=session)

        action({"url": "https://hooks.example.com/in", "body": {"who": "{{name}}"}}, {"name": "Ada", "other": 1})

        assert session.calls[0][2]["json"] == {"who": "Ada"}

    def test_error_status_fails(self):
        action = WebhookAction(session=FakeSession(make_response(500, text="down")))

        with pytest.raises(requests.HTTPError):
            action({"url": "https://hooks.example.com/in"}, {})

    def test_requires_url(self):
        with pytest.raises(ActionError, match="requires 'url'"):
            WebhookAction(session=FakeSession(make_response()))({}, {})

    def test_default_session_uses_requests(self, monkeypatch):
        calls = []

        def fake_request(self, method, url, **kwargs):
            calls.append((method, url))
            return make_response(204, text="")

        monkeypatch.setattr(requests.Session, "request", fake_request)

        output = WebhookAction()({"url": "https://hooks.example.com/in", "method": "PUT"}, {})

        assert calls == [("PUT", "https://hooks.example.com/in")]
        assert output["webhook_response"] == {"status": 204, "body": ""}


class TestWait:

    def test_returns_empty_output(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr("automation_engine.actions.builtin.time.sleep", sleeps.append)

        assert wait({"duration_ms": 250}, {"a": 1}) == {}
        assert sleeps == [0.25]

    def test_default_duration(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr("automation_engine.actions.builtin.time.sleep", sleeps.append)

        wait({}, {})

        assert sleeps == [5.0]

    def test_invalid_duration(self):
        with pytest.raises(ActionError, match="must be a number"):
            wait({"duration_ms": "later"}, {})
