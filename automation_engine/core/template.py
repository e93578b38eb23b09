"""Template interpolation.

Replaces ``{{path.to.key}}`` placeholders with values looked up in a data
dict. Paths walk dict keys and integer list indexes; a path that does not
resolve leaves its placeholder untouched so the gap stays visible in
rendered output.
"""

import json
import re
from typing import Any, Dict, Mapping

from .logging import get_logger


logger = get_logger(__name__)

TEMPLATE_PATTERN = re.compile(r'\{\{([^}]+)\}\}')

_MISSING = object()


def lookup_path(data: Any, path: str) -> Any:
    """Resolve a dot path against nested dicts and lists.

    Returns the module-level ``_MISSING`` sentinel when any segment does not
    resolve, so that stored ``None`` values stay distinguishable from gaps.
    """
    current = data
    for part in path.split('.'):
        part = part.strip()
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list):
            try:
                index = int(part)
            except ValueError:
                return _MISSING
            if index < 0 or index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def render_value(value: Any) -> str:
    """Render a looked-up value the way it appears inside a string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def interpolate(template: Any, data: Dict[str, Any]) -> Any:
    """Interpolate every placeholder in ``template`` from ``data``.

    Non-string templates are returned unchanged.
    """
    if not isinstance(template, str) or '{{' not in template:
        return template

    def replace(match: "re.Match") -> str:
        path = match.group(1).strip()
        value = lookup_path(data, path)
        if value is _MISSING:
            logger.debug(f"Template key '{path}' not found; leaving placeholder")
            return match.group(0)
        return render_value(value)

    return TEMPLATE_PATTERN.sub(replace, template)


def interpolate_structure(value: Any, data: Dict[str, Any]) -> Any:
    """Interpolate strings nested anywhere inside dicts and lists."""
    if isinstance(value, str):
        return interpolate(value, data)
    if isinstance(value, dict):
        return {k: interpolate_structure(v, data) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_structure(item, data) for item in value]
    return value
