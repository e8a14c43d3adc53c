"""
Environment configuration for Lambda handlers.

Configuration is read once at cold start and validated on boot: a missing required
variable or a non-numeric numeric setting fails the import of the handler module.

Follows steering rules:
- Configuration read once at startup
- Validate env vars on boot
"""

import os
from typing import Dict, Any, Iterable, Optional


# Optional settings shared by the handlers, with their defaults
DEFAULTS: Dict[str, Any] = {
    'MAX_PLUS_ONES': 5,
    'RSVP_MAX_RETRIES': 3,
    'STORAGE_TIMEOUT_SECONDS': 3.0,
}


def load_config(
    required: Iterable[str],
    optional: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Load and validate environment variables.

    Keys in the returned dictionary are the lowercased variable names. Optional
    values are converted to the type of their default.

    Args:
        required: Variables that must be set and non-empty
        optional: Variable name -> default for variables that may be absent

    Returns:
        Configuration dictionary

    Raises:
        ValueError: If a required variable is missing or a value has the wrong type
    """
    config: Dict[str, Any] = {}
    missing_vars = []

    for var in required:
        value = os.environ.get(var)
        if not value:
            missing_vars.append(var)
        else:
            config[var.lower()] = value

    if missing_vars:
        raise ValueError(
            f"Missing required environment variables: {', '.join(missing_vars)}"
        )

    for var, default in (optional if optional is not None else DEFAULTS).items():
        value = os.environ.get(var)
        if value is None or value == '':
            config[var.lower()] = default
            continue
        if isinstance(default, (int, float)) and not isinstance(default, bool):
            try:
                value = type(default)(value)
            except ValueError:
                raise ValueError(f'Environment variable {var} must be a number, got {value!r}')
        config[var.lower()] = value

    return config
