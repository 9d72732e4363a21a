"""Shared utility functions for the manifold engine layer."""

from __future__ import annotations

from manifold.errors import ConfigurationError


def validate_name(value: str, label: str = "name") -> str:
    """Validate that a value is usable as a MongoDB model or collection name.

    Names must be non-empty and may not contain ``$`` or NUL characters.
    MongoDB also reserves the ``system.`` prefix. Anything else MongoDB
    accepts (leading digits, spaces) is allowed so existing collections can
    be declared as-is. Raises ConfigurationError if the name is unusable.

    This is the single validation point for names used across the engine
    (model construction, collection declaration, materialization aliases).
    """
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"Invalid {label}: {value!r} (must be a non-empty string)")
    if "$" in value or "\0" in value:
        raise ConfigurationError(f"Invalid {label}: {value!r} (may not contain '$' or NUL)")
    if value.startswith("system."):
        raise ConfigurationError(f"Invalid {label}: {value!r} (the 'system.' prefix is reserved)")
    return value
