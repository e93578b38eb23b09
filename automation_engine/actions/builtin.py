"""Built-in action handlers: email, CRM contacts, webhooks and wait."""

import time
from typing import Any, Dict, Optional

import requests

from ..core.action_registry import ActionRegistry
from ..core.exceptions import ActionError
from ..core.logging import get_logger
from ..core.template import interpolate, interpolate_structure
from ..storage.store import WorkflowStore

logger = get_logger(__name__)

DEFAULT_WAIT_MS = 5000
BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def send_email(config: Dict[str, Any], input_data: Dict[str, Any]) -> Dict[str, Any]:
    """Render an email from the node config.

    Delivery belongs to an outbound mail adapter; the rendered message is
    returned so that downstream nodes and the execution log can see it.
    """
    if not config.get("to"):
        raise ActionError("send_email requires 'to'", action_type="send_email")

    email_data = {
        "to": interpolate(config.get("to", ""), input_data),
        "subject": interpolate(config.get("subject", ""), input_data),
        "body": interpolate(config.get("body", ""), input_data),
    }
    logger.info(f"Rendered email to {email_data['to']}: {email_data['subject']}")
    return {"email_sent": True, "email_data": email_data}


def wait(config: Dict[str, Any], input_data: Dict[str, Any]) -> Dict[str, Any]:
    """Block the run for ``duration_ms`` (default 5000) and pass the input through."""
    duration_ms = config.get("duration_ms") or DEFAULT_WAIT_MS
    try:
        seconds = float(duration_ms) / 1000
    except (TypeError, ValueError):
        raise ActionError(f"wait duration_ms must be a number, got {duration_ms!r}", action_type="wait")

    logger.debug(f"Waiting {duration_ms}ms")
    time.sleep(max(seconds, 0.0))
    return {}


class ContactActions:
    """CRM actions backed by the contacts table."""

    def __init__(self, store: WorkflowStore):
        self.store = store

    def create_contact(self, config: Dict[str, Any], input_data: Dict[str, Any]) -> Dict[str, Any]:
        if not config.get("email"):
            raise ActionError("create_contact requires 'email'", action_type="create_contact")

        contact_data = {
            "email": interpolate(config.get("email", ""), input_data),
            "first_name": interpolate(config.get("first_name", ""), input_data),
            "last_name": interpolate(config.get("last_name", ""), input_data),
            "phone": interpolate(config.get("phone", ""), input_data),
        }
        contact = self.store.create_contact(contact_data)

        logger.info(f"Created contact {contact['id']} for {contact_data['email']}")
        return {
            "contact_created": True,
            "contact_id": contact["id"],
            "contact_data": contact_data,
        }

    def update_contact(self, config: Dict[str, Any], input_data: Dict[str, Any]) -> Dict[str, Any]:
        if not config.get("contact_id"):
            raise ActionError("update_contact requires 'contact_id'", action_type="update_contact")

        updates = config.get("updates") or {}
        if not isinstance(updates, dict):
            raise ActionError("update_contact 'updates' must be an object", action_type="update_contact")

        update_data = {
            "contact_id": interpolate(config["contact_id"], input_data),
            "updates": interpolate_structure(updates, input_data),
        }
        # NotFoundError from the store fails the node with its message
        self.store.update_contact(update_data["contact_id"], update_data["updates"])

        logger.info(f"Updated contact {update_data['contact_id']}")
        return {"contact_updated": True, "update_data": update_data}


class WebhookAction:
    """Sends an HTTP request built from the node config.

    ``body`` defaults to the node input. Non-2xx responses fail the node.
    """

    def __init__(self, timeout_seconds: float = 10.0, session: Optional[requests.Session] = None):
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def __call__(self, config: Dict[str, Any], input_data: Dict[str, Any]) -> Dict[str, Any]:
        if not config.get("url"):
            raise ActionError("send_webhook requires 'url'", action_type="send_webhook")

        url = interpolate(config["url"], input_data)
        method = str(config.get("method") or "POST").upper()
        headers = {
            str(key): str(value)
            for key, value in interpolate_structure(config.get("headers") or {}, input_data).items()
        }
        body = config.get("body")
        body = input_data if body is None else interpolate_structure(body, input_data)

        request_kwargs: Dict[str, Any] = {"headers": headers, "timeout": self.timeout_seconds}
        if method in BODY_METHODS:
            request_kwargs["json"] = body

        logger.info(f"Sending webhook {method} {url}")
        response = self.session.request(method, url, **request_kwargs)
        response.raise_for_status()

        try:
            response_body = response.json()
        except ValueError:
            response_body = response.text

        return {
            "webhook_sent": True,
            "webhook_response": {
                "status": response.status_code,
                "body": response_body,
            },
        }


def register_builtin_actions(
    registry: ActionRegistry,
    store: WorkflowStore,
    webhook_timeout_seconds: float = 10.0,
    session: Optional[requests.Session] = None
) -> None:
    """Register the five built-in handlers on ``registry``."""
    contacts = ContactActions(store)

    registry.register("send_email", send_email, "Send an email message")
    registry.register("create_contact", contacts.create_contact, "Create a new contact")
    registry.register("update_contact", contacts.update_contact, "Update an existing contact")
    registry.register(
        "send_webhook",
        WebhookAction(timeout_seconds=webhook_timeout_seconds, session=session),
        "Send an HTTP webhook"
    )
    registry.register("wait", wait, "Wait for a specified duration")

    logger.info(f"Registered {len(registry.action_types())} action handlers")
