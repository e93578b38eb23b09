"""Action registry mapping action types to handler callables."""

import inspect
import threading
from typing import Any, Callable, Dict, List

from .exceptions import ActionError
from .logging import get_logger

logger = get_logger(__name__)

ActionHandler = Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


class ActionRegistry:
    """Registry of action handlers invoked by action nodes.

    A handler is called as ``handler(config, input_data)`` where ``config`` is
    the node's ``action_config`` with templates still unresolved. It returns a
    dict that the engine merges over the node input, or raises to fail the
    node.
    """

    def __init__(self):
        self._handlers: Dict[str, ActionHandler] = {}
        self._descriptions: Dict[str, str] = {}
        self._lock = threading.RLock()

    def register(self, action_type: str, handler: ActionHandler, description: str = "",
                 replace: bool = False) -> None:
        """Register a handler for an action type.

        Args:
            action_type: Key used by ``ActionNodeConfig.action_type``
            handler: Callable taking ``(config, input_data)``
            description: Optional description of what the handler does
            replace: Allow overriding an existing registration

        Raises:
            ActionError: If the name is empty, the handler is not callable, or
                the type is already registered and ``replace`` is False
        """
        if not action_type or not action_type.strip():
            raise ActionError("Action type cannot be empty")

        action_type = action_type.strip()

        if not callable(handler):
            raise ActionError(f"Handler for '{action_type}' must be callable", action_type=action_type)

        try:
            sig = inspect.signature(handler)
            if len(sig.parameters) < 2:
                logger.warning(f"Handler for '{action_type}' takes fewer than two parameters")
        except (ValueError, TypeError):
            logger.debug(f"Cannot inspect signature of handler for '{action_type}'")

        with self._lock:
            if action_type in self._handlers and not replace:
                raise ActionError(f"Action type '{action_type}' is already registered", action_type=action_type)
            self._handlers[action_type] = handler
            self._descriptions[action_type] = description.strip() if description else ""

        logger.info(f"Registered action handler '{action_type}'")

    def get(self, action_type: str) -> ActionHandler:
        """Look up the handler for an action type.

        Raises:
            ActionError: If no handler is registered
        """
        with self._lock:
            handler = self._handlers.get(action_type)
        if handler is None:
            raise ActionError(f"Unknown action type: {action_type}", action_type=action_type)
        return handler

    def dispatch(self, action_type: str, config: Dict[str, Any], input_data: Dict[str, Any]) -> Dict[str, Any]:
        """Invoke the handler for ``action_type`` and return its output dict."""
        handler = self.get(action_type)
        result = handler(config, input_data)
        if result is None:
            return {}
        if not isinstance(result, dict):
            raise ActionError(
                f"Handler for '{action_type}' returned {type(result).__name__}, expected dict",
                action_type=action_type
            )
        return result

    def has(self, action_type: str) -> bool:
        with self._lock:
            return action_type in self._handlers

    def unregister(self, action_type: str) -> bool:
        """Remove a handler; returns False if it was not registered."""
        with self._lock:
            if action_type not in self._handlers:
                return False
            del self._handlers[action_type]
            self._descriptions.pop(action_type, None)
        logger.info(f"Unregistered action handler '{action_type}'")
        return True

    def list_actions(self) -> Dict[str, str]:
        """Map each registered action type to its description."""
        with self._lock:
            return dict(self._descriptions)

    def action_types(self) -> List[str]:
        with self._lock:
            return sorted(self._handlers)
