"""Order access tokens: reading them from the environment and keeping them out of logs."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from typing import Any

REDACTED = "[REDACTED]"

CI_ENV_VARS = ("CI", "GITHUB_ACTIONS", "GITLAB_CI", "BUILDKITE", "CIRCLECI", "JENKINS_URL")
_FALSY_FLAGS = {"", "0", "false", "no", "off"}

# Field names whose values are credentials for order tracking or its API.
_CREDENTIAL_KEY_PARTS = ("token", "secret", "password", "api_key", "apikey", "authorization")
_URL_TOKEN_PATTERN = re.compile(r"(?P<prefix>[?&]token=)(?P<value>[^&#]*)", re.IGNORECASE)


def is_ci_environment(env: Mapping[str, str] | None = None) -> bool:
    """True when any well-known CI flag is set to something other than a falsy word."""
    env_map = os.environ if env is None else env
    return any(
        str(env_map.get(name, "")).strip().lower() not in _FALSY_FLAGS for name in CI_ENV_VARS
    )


def mask_secret(
    value: str | None,
    *,
    visible_prefix: int = 2,
    visible_suffix: int = 2,
    force_full_redaction: bool = False,
) -> str:
    """Hide the middle of a token; CI runs always hide all of it."""
    if value is None:
        return "[MISSING]"
    text_value = str(value)
    if not text_value:
        return "[EMPTY]"
    if force_full_redaction or is_ci_environment():
        return REDACTED

    head = max(int(visible_prefix), 0)
    tail = max(int(visible_suffix), 0)
    hidden = len(text_value) - head - tail
    if hidden <= 0:
        return "*" * len(text_value)
    return f"{text_value[:head]}{'*' * hidden}{text_value[len(text_value) - tail:]}"


def redact_url_token(url: str, *, force_full_redaction: bool = False) -> str:
    """Mask the `token` query parameter of a tracking URL."""

    def _mask(match: re.Match[str]) -> str:
        masked = mask_secret(match.group("value"), force_full_redaction=force_full_redaction)
        return match.group("prefix") + masked

    return _URL_TOKEN_PATTERN.sub(_mask, str(url))


def read_secret_env(
    env_var: str,
    *,
    default: str | None = None,
    required: bool = False,
) -> str | None:
    """Read an access token from the environment; blank counts as unset."""
    env_name = str(env_var).strip()
    if not env_name:
        msg = "env_var cannot be blank."
        raise ValueError(msg)

    value = os.environ.get(env_name, "")
    if value:
        return value
    if required and default is None:
        msg = f"Missing required environment secret: {env_name}"
        raise KeyError(msg)
    return default


def sanitize_logging_payload(
    fields: Mapping[str, Any],
    *,
    force_full_redaction: bool | None = None,
) -> dict[str, Any]:
    """Copy log fields with credentials masked, including tokens inside URLs."""
    full_redaction = is_ci_environment() if force_full_redaction is None else force_full_redaction
    return {str(key): _redact(str(key), value, bool(full_redaction)) for key, value in fields.items()}


def _redact(key_name: str, value: Any, full_redaction: bool) -> Any:
    if _is_credential_key(key_name):
        return mask_secret(str(value), force_full_redaction=full_redaction)
    if isinstance(value, str):
        if "token=" in value.lower():
            return redact_url_token(value, force_full_redaction=full_redaction)
        return value
    if isinstance(value, Mapping):
        return {str(key): _redact(str(key), item, full_redaction) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(key_name, item, full_redaction) for item in value]
    return value


def _is_credential_key(key_name: str) -> bool:
    lowered = key_name.strip().lower()
    return bool(lowered) and any(part in lowered for part in _CREDENTIAL_KEY_PARTS)
