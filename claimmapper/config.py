"""Service configuration read from the environment, and logging setup."""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

LOGGER_NAME = "claimmapper"

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_REQUIRED = (
    "PORT",
    "IDENTITY_PROVIDER_OID_URL",
    "TOKEN_ROLES_PATH",
    "TOKEN_CONTEXT_PATH",
    "DEFAULT_CLAIMS",
    "PG_HOST",
    "PG_PORT",
    "PG_USER",
    "PG_PASSWORD",
    "PG_DB",
)


class ConfigError(Exception):
    """Raised when the environment does not hold a usable configuration."""


@dataclass
class ClaimConfig:
    """Claims granted by default to holders of any of the roles in a context."""

    roles: list[str] = field(default_factory=list)
    context: str = ""
    claims: list[str] = field(default_factory=list)


@dataclass
class Config:
    """Settings the service runs with."""

    port: int
    identity_provider_oid_url: str
    token_roles_path: str
    token_context_path: str
    default_claims: list[ClaimConfig]
    pg_host: str
    pg_port: str
    pg_user: str
    pg_password: str = field(repr=False)
    pg_db: str

    def database_url(self) -> str:
        """Connection URL of the PostgreSQL database."""
        return (
            f"postgresql://{self.pg_user}:{self.pg_password}"
            f"@{self.pg_host}:{self.pg_port}/{self.pg_db}"
        )


def _parse_port(value: str) -> int:
    if not _INTEGER.fullmatch(value):
        raise ConfigError(f'Environment variable "PORT" is not an integer: {value!r}')
    number = int(value)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ConfigError(f'Environment variable "PORT" is out of range: {value!r}')
    return number


def _json_field(data: dict[str, Any], name: str) -> Any:
    """Value of a key matched case-insensitively; the last match wins."""
    folded = name.casefold()
    value = None
    for key, item in data.items():
        if key.casefold() == folded:
            value = item
    return value


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError("expected a list of strings")
    return list(value)


def _parse_claim_config(item: Any) -> ClaimConfig:
    if item is None:
        return ClaimConfig()
    if not isinstance(item, dict):
        raise ValueError("expected an object")
    context = _json_field(item, "context")
    if context is None:
        context = ""
    if not isinstance(context, str):
        raise ValueError("context must be a string")
    return ClaimConfig(
        roles=_string_list(_json_field(item, "roles")),
        context=context,
        claims=_string_list(_json_field(item, "claims")),
    )


def _parse_default_claims(raw: str) -> list[ClaimConfig]:
    try:
        data = json.loads(raw)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError("expected a list")
        return [_parse_claim_config(item) for item in data]
    except ValueError as exc:
        raise ConfigError('Environment variable "DEFAULT_CLAIMS" is invalid') from exc


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    """Build the configuration from environment variables.

    Raises ConfigError naming the first variable that is missing or invalid.
    """
    env = os.environ if environ is None else environ

    values: dict[str, str] = {}
    for name in _REQUIRED:
        if name not in env:
            raise ConfigError(f'Environment variable "{name}" not found')
        values[name] = env[name]
        if name == "PORT":
            port = _parse_port(values[name])

    return Config(
        port=port,
        identity_provider_oid_url=values["IDENTITY_PROVIDER_OID_URL"],
        token_roles_path=values["TOKEN_ROLES_PATH"],
        token_context_path=values["TOKEN_CONTEXT_PATH"],
        default_claims=_parse_default_claims(values["DEFAULT_CLAIMS"]),
        pg_host=values["PG_HOST"],
        pg_port=values["PG_PORT"],
        pg_user=values["PG_USER"],
        pg_password=values["PG_PASSWORD"],
        pg_db=values["PG_DB"],
    )


def context_policy_url(context: str, environ: Mapping[str, str] | None = None) -> str:
    """Policy URL for a context, falling back to the default one, or ''."""
    env = os.environ if environ is None else environ
    url = env.get(f"TSA_URL_{context}")
    if url is None:
        url = env.get("TSA_URL_default", "")
    return url


class _JsonFormatter(logging.Formatter):
    _LEVELS = {"WARNING": "warn", "CRITICAL": "fatal"}

    def format(self, record: logging.LogRecord) -> str:
        level = self._LEVELS.get(record.levelname, record.levelname.lower())
        timestamp = datetime.fromtimestamp(record.created).astimezone()
        entry: dict[str, Any] = {
            "level": level,
            "timestamp": timestamp.isoformat(timespec="seconds"),
            "msg": record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            entry.update(fields)
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _JsonHandler(logging.StreamHandler):
    pass


def initialize_logger() -> logging.Logger:
    """Configure the service logger to write JSON lines to stderr."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    if not any(isinstance(h, _JsonHandler) for h in logger.handlers):
        handler = _JsonHandler(sys.stderr)
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
    return logger