"""
Mustache-style ``{{ variable }}`` substitution for prompt text fields.
"""
from __future__ import annotations

import re
from typing import Any, Mapping

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")


def _stringify(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_template(template: str | None, variables: Mapping[str, Any] | None) -> str | None:
    """
    Replace ``{{ key }}`` placeholders with the stringified variable value.

    Keys are matched literally (no nested paths or expressions). Placeholders
    whose key is not in ``variables`` are left as they are. None and booleans
    render as their JSON literals.
    """
    if not template or not variables:
        return template

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in variables:
            return _stringify(variables[key])
        return match.group(0)

    return _PLACEHOLDER.sub(_substitute, template)
