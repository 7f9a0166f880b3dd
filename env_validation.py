"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

DEFAULTS: Dict[str, str] = {
    "DB_PATH": "ladder.db",
    "LADDER_DAILY_PASS_LIMIT": "5",
    "LADDER_MAX_TX_ATTEMPTS": "5",
    "LADDER_DB_TIMEOUT": "5.0",
    "LADDER_DB_MAX_CONNECTIONS": "10",
}

_POSITIVE_INTS = ("LADDER_DAILY_PASS_LIMIT", "LADDER_MAX_TX_ATTEMPTS", "LADDER_DB_MAX_CONNECTIONS")
_POSITIVE_FLOATS = ("LADDER_DB_TIMEOUT",)


def validate_environment() -> None:
    """Apply defaults and validate numeric settings.

    Raises EnvironmentError if validation fails.
    """
    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in DEFAULTS.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    problems = []
    for var in _POSITIVE_INTS:
        raw = os.getenv(var, "")
        try:
            if int(raw) <= 0:
                problems.append(f"{var} must be a positive integer (got {raw!r})")
        except ValueError:
            problems.append(f"{var} must be a positive integer (got {raw!r})")
    for var in _POSITIVE_FLOATS:
        raw = os.getenv(var, "")
        try:
            if float(raw) <= 0:
                problems.append(f"{var} must be a positive number (got {raw!r})")
        except ValueError:
            problems.append(f"{var} must be a positive number (got {raw!r})")

    if problems:
        raise EnvironmentError("Invalid environment configuration: " + "; ".join(problems))


def get_env_int(name: str, default: int) -> int:
    """Get a positive integer from the environment, falling back to ``default``."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, value, default)
        return default
    if parsed <= 0:
        logger.warning("Ignoring non-positive %s=%r; using %s", name, value, default)
        return default
    return parsed


def get_env_float(name: str, default: float) -> float:
    """Get a positive float from the environment, falling back to ``default``."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        parsed = float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", name, value, default)
        return default
    if parsed <= 0:
        return default
    return parsed
