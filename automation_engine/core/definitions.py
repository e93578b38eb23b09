"""Read-only catalog of trigger and action definitions for workflow editors."""

from typing import Dict, Iterable, List, Optional

from ..models.core import ActionDefinition, TriggerDefinition
from .logging import get_logger

logger = get_logger(__name__)


BUILTIN_TRIGGERS = [
    TriggerDefinition(
        type="manual",
        name="Manual Trigger",
        description="Manually triggered workflow",
        config_schema={},
        output_schema={"trigger_data": "object"},
    ),
    TriggerDefinition(
        type="scheduled",
        name="Scheduled Trigger",
        description="Time-based trigger",
        config_schema={"cron_expression": "string"},
        output_schema={"timestamp": "string"},
    ),
    TriggerDefinition(
        type="webhook",
        name="Webhook Trigger",
        description="HTTP webhook trigger",
        config_schema={"webhook_url": "string"},
        output_schema={"payload": "object", "headers": "object"},
    ),
    TriggerDefinition(
        type="form_submission",
        name="Form Submission",
        description="Triggered when a form is submitted",
        config_schema={"form_id": "string"},
        output_schema={"form_data": "object", "contact_info": "object"},
    ),
]

BUILTIN_ACTIONS = [
    ActionDefinition(
        type="send_email",
        name="Send Email",
        description="Send an email message",
        category="Communication",
        config_schema={"to": "string", "subject": "string", "body": "string"},
        input_schema={"contact_data": "object"},
        output_schema={"email_sent": "boolean", "email_data": "object"},
    ),
    ActionDefinition(
        type="create_contact",
        name="Create Contact",
        description="Create a new contact",
        category="CRM",
        config_schema={"email": "string", "first_name": "string", "last_name": "string", "phone": "string"},
        input_schema={"contact_info": "object"},
        output_schema={"contact_id": "string", "contact_created": "boolean", "contact_data": "object"},
    ),
    ActionDefinition(
        type="update_contact",
        name="Update Contact",
        description="Update an existing contact",
        category="CRM",
        config_schema={"contact_id": "string", "updates": "object"},
        input_schema={"contact_data": "object"},
        output_schema={"contact_updated": "boolean", "update_data": "object"},
    ),
    ActionDefinition(
        type="send_webhook",
        name="Send Webhook",
        description="Send an HTTP webhook",
        category="Integration",
        config_schema={"url": "string", "method": "string", "headers": "object", "body": "object"},
        input_schema={"data": "object"},
        output_schema={"webhook_sent": "boolean", "webhook_response": "object"},
    ),
    ActionDefinition(
        type="wait",
        name="Wait/Delay",
        description="Wait for a specified duration",
        category="Control",
        config_schema={"duration_ms": "number"},
        input_schema={"data": "object"},
        output_schema={"data": "object"},
    ),
]


class DefinitionRegistry:
    """Catalog of trigger and action definitions, keyed by type."""

    def __init__(
        self,
        triggers: Optional[Iterable[TriggerDefinition]] = None,
        actions: Optional[Iterable[ActionDefinition]] = None,
    ):
        self._triggers: Dict[str, TriggerDefinition] = {}
        self._actions: Dict[str, ActionDefinition] = {}

        for trigger in (BUILTIN_TRIGGERS if triggers is None else triggers):
            self.add_trigger(trigger)
        for action in (BUILTIN_ACTIONS if actions is None else actions):
            self.add_action(action)

        logger.debug(f"Loaded {len(self._triggers)} trigger and {len(self._actions)} action definitions")

    def add_trigger(self, definition: TriggerDefinition) -> None:
        self._triggers[definition.type] = definition

    def add_action(self, definition: ActionDefinition) -> None:
        self._actions[definition.type] = definition

    def get_trigger_definitions(self) -> List[TriggerDefinition]:
        return list(self._triggers.values())

    def get_action_definitions(self) -> List[ActionDefinition]:
        return list(self._actions.values())

    def get_action_definitions_by_category(self, category: str) -> List[ActionDefinition]:
        """Action definitions whose category matches exactly."""
        return [action for action in self._actions.values() if action.category == category]

    def get_action_definition(self, action_type: str) -> Optional[ActionDefinition]:
        return self._actions.get(action_type)
