"""Environment variable validation and management."""

import os
import logging

logger = logging.getLogger(__name__)

PROVIDER_KEY_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
}


class EnvironmentError(Exception):
    """Raised when environment variables are present but invalid."""
    pass


def validate_environment() -> None:
    """Validate environment variables used by the diagnostics service.

    Provider keys are optional at startup: a missing key only fails the
    requests that target that provider. Raises EnvironmentError for values
    that are set but malformed.
    """
    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    url_vars = {f"{provider.upper()}_API_URL" for provider in PROVIDER_KEY_VARS}
    for var in sorted(url_vars):
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    numeric_vars = {"LLM_TIMEOUT": float, "LLM_TEMPERATURE": float, "LLM_MAX_TOKENS": int}
    for var, caster in numeric_vars.items():
        value = os.getenv(var)
        if not value:
            continue
        try:
            caster(value)
        except ValueError as exc:
            raise EnvironmentError(f"Invalid numeric value for {var}: {value}") from exc

    configured = configured_providers()
    if not configured:
        logger.warning(
            "No LLM provider key set (%s); question generation and grading will fail",
            ", ".join(PROVIDER_KEY_VARS.values()),
        )
    else:
        logger.info("LLM providers configured: %s", ", ".join(configured))


def configured_providers() -> list[str]:
    return [name for name, var in PROVIDER_KEY_VARS.items() if os.getenv(var)]


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default
