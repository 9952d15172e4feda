"""Standalone helpers over the process environment.

These are the "just give me a value" functions for scripts and module-level
constants, in the spirit of:

    KAFKA_TOPIC: str = get_env("KAFKA_TOPIC", "purchases.v1")

They read `os.environ` directly: no prefix, no cache, no resolver state.
Parse failures log a warning and return the default, same as `Resolver`.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import timedelta
from typing import Any, Iterable
from urllib.parse import ParseResult, urlparse

from . import parsing
from .errors import InvalidValueError, MissingRequiredError, VariableNotSetError
from .resolver import Resolver

log = logging.getLogger(__name__)

_ENV_REF_RE = re.compile(r"\$\{([^}]*)\}|\$([A-Za-z0-9_]+)")


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key) or default


def get_env_bool(key: str, default: bool = False) -> bool:
    raw = os.environ.get(key, "")
    if not raw:
        return default
    try:
        return parsing.parse_bool(raw)
    except ValueError:
        log.warning("Invalid boolean for %s: %s", key, raw)
        return default


def get_env_int(key: str, default: int = 0) -> int:
    raw = os.environ.get(key, "")
    if not raw:
        return default
    try:
        return parsing.parse_int(raw)
    except ValueError:
        log.warning("Invalid int for %s: %s", key, raw)
        return default


def get_env_int64(key: str, default: int = 0) -> int:
    raw = os.environ.get(key, "")
    if not raw:
        return default
    try:
        return parsing.parse_int64(raw)
    except ValueError:
        log.warning("Invalid int64 for %s: %s", key, raw)
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    raw = os.environ.get(key, "")
    if not raw:
        return default
    try:
        return parsing.parse_float(raw)
    except ValueError:
        log.warning("Invalid float for %s: %s", key, raw)
        return default


def get_env_duration(key: str, default: timedelta = timedelta(0)) -> timedelta:
    """Same rules as `Resolver.get_duration`, unit hints taken from `key`."""
    raw = os.environ.get(key, "")
    if not raw:
        return default
    try:
        return parsing.parse_duration(key, raw)
    except ValueError:
        log.warning("Invalid duration for %s: %s", key, raw)
        return default


def get_env_string_list(key: str, default: list[str] | None = None) -> list[str] | None:
    raw = os.environ.get(key, "")
    if not raw:
        return default
    return parsing.split_list(raw) or default


def get_env_int_list(key: str, default: list[int] | None = None) -> list[int] | None:
    raw = os.environ.get(key, "")
    if not raw:
        return default

    result: list[int] = []
    for piece in parsing.split_list(raw):
        try:
            result.append(parsing.parse_int(piece))
        except ValueError:
            log.warning("Invalid int in list for %s: %s", key, piece)
    return result or default


def get_env_url(key: str, default: str = "") -> ParseResult | None:
    """Parse a URL, falling back to parsing `default`.

    Returns None when neither the variable nor the default yields a URL.
    """
    raw = get_env(key, default)
    if not raw:
        return None
    try:
        parsed = urlparse(raw)
        _ = parsed.port
        return parsed
    except ValueError as e:
        log.warning("Invalid URL for %s: %s, error: %s", key, raw, e)

    if default and default != raw:
        try:
            return urlparse(default)
        except ValueError:
            return None
    return None


# --- Must-get ----------------------------------------------------------------
# For the application entry point: a missing value here is a startup error,
# raised rather than defaulted.


def must_get_env(key: str) -> str:
    raw = os.environ.get(key, "")
    if not raw:
        raise VariableNotSetError(key)
    return raw


def must_get_env_int(key: str) -> int:
    raw = must_get_env(key)
    try:
        return parsing.parse_int(raw)
    except ValueError as e:
        raise InvalidValueError(key, raw, "not an integer") from e


def must_get_env_bool(key: str) -> bool:
    raw = must_get_env(key)
    try:
        return parsing.parse_bool(raw)
    except ValueError as e:
        raise InvalidValueError(key, raw, "not a boolean") from e


# --- Misc --------------------------------------------------------------------


def is_env_set(key: str) -> bool:
    return key in os.environ


def get_env_or_default(key: str, default: Any) -> Any:
    """Convert the variable to the type of `default`.

    bool, int, float, timedelta and str defaults are understood; anything else
    gets the raw string. Unconvertible values return the default.
    """
    raw = os.environ.get(key, "")
    if not raw:
        return default

    # bool before int: bool is a subclass of int.
    if isinstance(default, bool):
        converter = parsing.parse_bool
    elif isinstance(default, int):
        converter = parsing.parse_int
    elif isinstance(default, float):
        converter = parsing.parse_float
    elif isinstance(default, timedelta):
        def converter(value: str) -> timedelta:
            return parsing.parse_duration(key, value)
    else:
        return raw

    try:
        return converter(raw)
    except ValueError:
        return default


def get_env_with_fallback(keys: Iterable[str], default: str = "") -> str:
    """Return the first non-empty variable among `keys`."""
    for key in keys:
        value = os.environ.get(key)
        if value:
            return value
    return default


def set_env_if_not_set(key: str, value: str) -> bool:
    """Set `key` only if absent. Returns True if it was set."""
    if key in os.environ:
        return False
    os.environ[key] = value
    return True


def expand_env(text: str) -> str:
    """Expand $VAR and ${VAR} references from the environment.

    Unset variables expand to an empty string.
    """
    def lookup(match: re.Match[str]) -> str:
        name = match.group(1) if match.group(1) is not None else match.group(2)
        return os.environ.get(name, "")

    return _ENV_REF_RE.sub(lookup, text)


def get_all_env_with_prefix(prefix: str) -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if k.startswith(prefix)}


def get_env_port(key: str, default: int) -> int:
    """Get a TCP/UDP port; values outside 1..65535 fall back to the default."""
    port = get_env_int(key, default)
    if port < 1 or port > 65535:
        log.warning("Invalid port number for %s: %d, using default: %d", key, port, default)
        return default
    return port


def load_env_file(path: str | os.PathLike[str]) -> None:
    """Load a KEY=VALUE file into `os.environ` without overwriting anything.

    Raises:
        EnvFileError: the file cannot be read.
    """
    Resolver().load_env_file(path)


def validate_required(*keys: str) -> None:
    """Raise `MissingRequiredError` listing every absent key."""
    missing = [key for key in keys if key not in os.environ]
    if missing:
        raise MissingRequiredError(missing)
