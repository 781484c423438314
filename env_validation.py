"""Environment variable validation and typed accessors."""

import os
import logging
from pathlib import Path
from typing import Dict

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

def validate_environment() -> None:
    """Apply defaults and validate the service configuration.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
        "CONTENT_DIR": os.getenv("CONTENT_DIR") or "content",
        "GEMINI_MODEL": os.getenv("GEMINI_MODEL") or "gemini-1.5-flash",
        "GEMINI_API_BASE": os.getenv("GEMINI_API_BASE") or "https://generativelanguage.googleapis.com/v1beta",
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars: Dict[str, str] = {
        "GOOGLE_API_KEY": "API key enabling AI quiz feedback",
        "LLM_TIMEOUT": "Timeout in seconds for AI feedback requests",
        "ACTIVITY_LOG_LIMIT": "Number of activity log entries kept per learner",
    }

    url_vars = {"GEMINI_API_BASE"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    for var in ("LLM_TIMEOUT", "ACTIVITY_LOG_LIMIT"):
        value = os.getenv(var)
        if value:
            try:
                number = float(value)
            except ValueError:
                raise EnvironmentError(f"{var} must be numeric, got '{value}'") from None
            if number <= 0:
                raise EnvironmentError(f"{var} must be positive, got '{value}'")

    content_root = Path(os.environ["CONTENT_DIR"])
    if not content_root.is_dir():
        raise EnvironmentError(f"CONTENT_DIR does not exist or is not a directory: {content_root}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)

def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer for %s: %r; using %s", name, value, default)
        return default

def get_env_float(name: str, default: float) -> float:
    """Get float value from environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid number for %s: %r; using %s", name, value, default)
        return default
