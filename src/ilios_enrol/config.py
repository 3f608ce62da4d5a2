"""Ilios connection configuration.

Reads Ilios API settings from explicit arguments, environment variables
and YAML config file fallbacks.  The resulting ``Config`` is handed to
``IliosClient`` explicitly; nothing in the engine reads ambient state.

Precedence (highest to lowest):
    Arguments > Environment variables > YAML config > Built-in defaults

Environment variables:
    ILIOS_HOST_URL: Ilios instance URL (required)
    ILIOS_API_KEY: Ilios API access token (required)
    ILIOS_INSECURE: Skip SSL verification (optional, default: false)
    ILIOS_DEBUG: Enable debug logging (optional, default: false)
    ILIOS_TIMEOUT: Read timeout in seconds (optional, default: 60)
    ILIOS_MAX_BATCH_SIZE: Max ids per batch lookup (optional, default: 100)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass
class Config:
    host_url: str
    api_key: str
    api_version: str = "v3"
    insecure: bool = False
    debug: bool = False
    timeout: int = 60
    max_batch_size: int = 100


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate (normalised in place).

    Raises:
        ValueError: If the URL is malformed or the API key is empty.
    """
    config.host_url = config.host_url.strip()

    if not config.host_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid Ilios URL '{config.host_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.host_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid Ilios URL '{config.host_url}': URL must include a hostname"
        )

    config.host_url = config.host_url.removesuffix("/")

    if not config.api_key.strip():
        raise ValueError(
            "Ilios API key cannot be empty. Set ILIOS_API_KEY environment variable."
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_setting(
    env_key: str,
    fallbacks: dict,
    fallback_key: str,
    default: int,
    low: int,
    high: int,
) -> int:
    """Resolve a bounded integer setting: env > YAML > default."""
    raw = os.getenv(env_key)
    if raw is None:
        return int(fallbacks.get(fallback_key, default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    host_url: str | None = None,
    api_key: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    The caller is responsible for calling ``load_dotenv()`` beforehand
    if ``.env`` values should be visible through ``os.getenv()``.

    Args:
        host_url: Override Ilios URL.
        api_key: Override API access token.
        insecure: Skip SSL verification.
        debug: Enable debug logging.
        yaml_fallbacks: Values from the YAML config ``ilios`` section,
            used when neither argument nor env var is set.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the URL or API key is missing after checking all
            sources, or a numeric env var is out of range.
    """
    fb = yaml_fallbacks or {}

    url = host_url or os.getenv("ILIOS_HOST_URL") or fb.get("host_url")
    if not url:
        raise ValueError(
            "Ilios URL not found. Set ILIOS_HOST_URL environment variable "
            "or add 'host_url' to config.yml."
        )

    key = api_key or os.getenv("ILIOS_API_KEY") or fb.get("api_key")
    if not key:
        raise ValueError(
            "Ilios API key not found. Set ILIOS_API_KEY environment variable "
            "or add 'api_key' to config.yml."
        )

    final_insecure = insecure
    if not final_insecure:
        env_insecure = _get_bool_env("ILIOS_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    final_debug = debug
    if not final_debug:
        env_debug = _get_bool_env("ILIOS_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    config = Config(
        host_url=url.strip(),
        api_key=key.strip(),
        api_version=fb.get("api_version", "v3"),
        insecure=final_insecure,
        debug=final_debug,
        timeout=_get_int_setting(
            "ILIOS_TIMEOUT", fb, "timeout", 60, 1, 600
        ),
        max_batch_size=_get_int_setting(
            "ILIOS_MAX_BATCH_SIZE", fb, "max_batch_size", 100, 1, 1000
        ),
    )

    validate_config(config)

    return config
