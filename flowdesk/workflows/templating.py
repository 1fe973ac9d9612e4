"""``{{placeholder}}`` substitution for step parameters.

Unresolved placeholders become the empty string rather than raising, so a
step whose inputs are incomplete is detected by its required-parameter check
and skipped instead of being invoked with a literal ``{{name}}``.
"""

import json
import re
from datetime import date, datetime
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def _stringify(value: Any) -> str:
    """Render a context value for insertion into a template string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, default=str)
    return str(value)


def resolve_template(text: str, context: dict[str, Any]) -> str:
    """Replace every ``{{key}}`` in *text* with ``context[key]``.

    Args:
        text: Template string.
        context: Shared execution context.

    Returns:
        The substituted string. Keys missing from *context* resolve to ``""``.
    """
    return _PLACEHOLDER.sub(lambda m: _stringify(context.get(m.group(1))), text)


def placeholders(text: str) -> list[str]:
    """List the placeholder names referenced by *text*, in order."""
    return [m.group(1) for m in _PLACEHOLDER.finditer(text)]


def resolve_parameters(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    """Resolve every string parameter against *context*.

    Non-string values (counts, flags) are passed through unchanged.
    """
    return {
        key: resolve_template(value, context) if isinstance(value, str) else value
        for key, value in parameters.items()
    }


def is_blank(value: Any) -> bool:
    """Whether a resolved value counts as absent for precondition checks."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, dict | list | tuple | set):
        return len(value) == 0
    return False
