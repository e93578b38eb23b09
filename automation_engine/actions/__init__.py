"""Action handlers dispatched by action nodes."""

from .builtin import ContactActions, WebhookAction, register_builtin_actions, send_email, wait

__all__ = [
    "ContactActions",
    "WebhookAction",
    "register_builtin_actions",
    "send_email",
    "wait",
]
