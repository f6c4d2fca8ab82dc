"""``{{path}}`` placeholder resolution against an execution context.

Three entry points:

  resolve(template, context)         → str. Misses keep the literal ``{{...}}``
                                       so they stay visible in prompts and logs;
                                       an explicit None renders as "null".
  resolve_pure(template, context)    → the raw typed value when the string is
                                       exactly one placeholder.
  resolve_object(obj, context)       → walks dicts/lists building tool input.
                                       Pure-placeholder misses drop the key.
                                       Partial-string misses and None render as
                                       "" rather than keeping the placeholder,
                                       so no ``{{...}}`` text reaches a tool.

Inside a placeholder, ``a.b || c.d || "default"`` returns the first operand
that is not missing, None, or "". Operands may be dotted paths or literals
(quoted strings, numbers, true/false/null, ``[]``, ``{}``).
"""

import json
import re
from typing import Any

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")
_PURE_RE = re.compile(r"^\{\{([^}]+)\}\}$")
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")


class _Missing:
    """Sentinel for "path does not exist" (distinct from an explicit None)."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


# ── Lookup ───────────────────────────────────────────────────────────────────

def lookup_path(context: Any, path: str) -> Any:
    """Walk a dotted path. Returns MISSING on any absent intermediate key.

    Lists accept integer segments and ``length``.
    """
    current = context
    for key in path.strip().split("."):
        if current is None or current is MISSING:
            return MISSING
        if isinstance(current, dict):
            if key not in current:
                return MISSING
            current = current[key]
        elif isinstance(current, (list, tuple)):
            if key == "length":
                current = len(current)
            elif key.lstrip("-").isdigit() and -len(current) <= int(key) < len(current):
                current = current[int(key)]
            else:
                return MISSING
        elif isinstance(current, str) and key == "length":
            current = len(current)
        else:
            return MISSING
    return current


def _literal(text: str) -> Any:
    """Parse a fallback operand as a literal, or MISSING if it is a path."""
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    if text in ("true", "false"):
        return text == "true"
    if text == "null":
        return None
    if text == "[]":
        return []
    if text == "{}":
        return {}
    if _NUMBER_RE.match(text):
        return float(text) if "." in text else int(text)
    return MISSING


def lookup_with_fallback(context: Any, expression: str) -> Any:
    """Resolve one placeholder body, honouring the ``||`` fallback chain."""
    if "||" not in expression:
        return lookup_path(context, expression)
    for part in expression.split("||"):
        part = part.strip()
        value = _literal(part)
        if value is MISSING:
            value = lookup_path(context, part)
        if value is not MISSING and value is not None and value != "":
            return value
    return MISSING


# ── Rendering ────────────────────────────────────────────────────────────────

def render_value(value: Any) -> str:
    """Render a resolved value for interpolation into a larger string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def resolve(template: Any, context: dict) -> Any:
    """Interpolate every placeholder in a string. Non-strings pass through."""
    if not isinstance(template, str):
        return template

    def _sub(match: re.Match) -> str:
        value = lookup_with_fallback(context, match.group(1).strip())
        if value is MISSING:
            return match.group(0)
        if value is None:
            return "null"
        return render_value(value)

    return PLACEHOLDER_RE.sub(_sub, template)


def is_pure(template: Any) -> bool:
    return isinstance(template, str) and _PURE_RE.match(template.strip()) is not None


def resolve_pure(template: str, context: dict) -> Any:
    """Return the underlying value for an exactly-one-placeholder string.

    Falls back to :func:`resolve` when the string is not pure.
    """
    match = _PURE_RE.match(template.strip()) if isinstance(template, str) else None
    if match is None:
        return resolve(template, context)
    return lookup_with_fallback(context, match.group(1).strip())


def resolve_object(obj: Any, context: dict) -> Any:
    """Recursively resolve a template structure into clean tool input."""
    if isinstance(obj, str):
        if is_pure(obj):
            return resolve_pure(obj, context)

        def _sub(match: re.Match) -> str:
            value = lookup_with_fallback(context, match.group(1).strip())
            if value is MISSING or value is None:
                return ""
            return render_value(value)

        return PLACEHOLDER_RE.sub(_sub, obj)

    if isinstance(obj, list):
        return [_none_if_missing(resolve_object(item, context)) for item in obj]

    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            resolved = resolve_object(value, context)
            if resolved is not MISSING:
                result[key] = resolved
        return result

    return obj


def _none_if_missing(value: Any) -> Any:
    return None if value is MISSING else value
