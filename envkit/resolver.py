"""Typed environment resolver.

A `Resolver` turns environment variables into typed values:

    env = Resolver(prefix="APP_", required=["DATABASE_URL"])
    port = env.get_int("PORT", 8080)              # reads APP_PORT
    timeout = env.get_duration("TIMEOUT_MS", ...)  # "250" -> 250 milliseconds

Behaviour shared by every typed getter:

- The configured prefix is applied to the key before lookup.
- An unset or empty variable returns the caller's default.
- A value that fails to parse also returns the default, with a warning logged
  unless the resolver is silent. Configuration "fails open": a malformed value
  never raises, it just falls back.

Raw string values are cached per resolver after the first non-empty lookup.
Only raw strings are cached; typed getters re-parse on every call. The cache is
only invalidated by `set_env`, `unset_env` and `clear_cache`.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable
from urllib.parse import ParseResult, urlparse

from pydantic import TypeAdapter, ValidationError

from . import parsing
from .config import ResolverConfig
from .errors import (
    EnvFileError,
    InvalidValueError,
    MissingRequiredError,
    VariableNotSetError,
)
from .store import EnvStore, OsEnvStore

log = logging.getLogger(__name__)


class Resolver:
    """Resolve prefixed environment variables into typed values.

    Args:
        config: A ready-made `ResolverConfig`. Keyword overrides (prefix=...,
            silent=..., required=..., env_file=..., env_file_required=...) are
            applied on top of it.
        store: Where variables live. Defaults to the process environment.
        logger: Where diagnostics go. Defaults to this module's logger.

    Raises:
        MissingRequiredError: a required key is absent (after loading env_file).
        EnvFileError: env_file cannot be read and env_file_required is set.
    """

    def __init__(
        self,
        config: ResolverConfig | None = None,
        *,
        store: EnvStore | None = None,
        logger: logging.Logger | None = None,
        **overrides: Any,
    ) -> None:
        if config is None:
            config = ResolverConfig(**overrides)
        elif overrides:
            config = ResolverConfig(**{**config.model_dump(), **overrides})

        self.config = config
        self._store: EnvStore = store if store is not None else OsEnvStore()
        self._logger = None if config.silent else (logger or log)
        self._cache: dict[str, str] = {}
        self._lock = threading.RLock()

        if config.env_file:
            try:
                self.load_env_file(config.env_file)
            except EnvFileError as e:
                if config.env_file_required:
                    raise
                self._warn("Failed to load env file %s: %s", config.env_file, e)

        if config.required:
            missing = self.validate_required(config.required)
            if missing:
                raise MissingRequiredError(missing)

    # --- Internals ------------------------------------------------------------

    @property
    def prefix(self) -> str:
        return self.config.prefix

    def _key(self, key: str) -> str:
        return f"{self.config.prefix}{key}"

    def _warn(self, msg: str, *args: Any) -> None:
        if self._logger is not None:
            self._logger.warning(msg, *args)

    def _lookup(self, full_key: str) -> str:
        """Return the raw value for a prefixed key, or "" if unset/empty."""
        with self._lock:
            cached = self._cache.get(full_key)
            if cached is not None:
                return cached

            value = self._store.get(full_key)
            if value:
                self._cache[full_key] = value
                return value
        return ""

    # --- Typed getters --------------------------------------------------------

    def get_string(self, key: str, default: str = "") -> str:
        value = self._lookup(self._key(key))
        return value if value else default

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get a boolean. Accepts true/false, 1/0, yes/no, y/n, t/f in any case."""
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            return default
        try:
            return parsing.parse_bool(raw)
        except ValueError:
            self._warn("Invalid boolean for %s: %s, using default: %r", full_key, raw, default)
            return default

    def get_int(self, key: str, default: int = 0) -> int:
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            return default
        try:
            return parsing.parse_int(raw)
        except ValueError:
            self._warn("Invalid int for %s: %s, using default: %r", full_key, raw, default)
            return default

    def get_int64(self, key: str, default: int = 0) -> int:
        """Like `get_int`, but values outside the signed 64-bit range use the default."""
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            return default
        try:
            return parsing.parse_int64(raw)
        except ValueError:
            self._warn("Invalid int64 for %s: %s, using default: %r", full_key, raw, default)
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            return default
        try:
            return parsing.parse_float(raw)
        except ValueError:
            self._warn("Invalid float for %s: %s, using default: %r", full_key, raw, default)
            return default

    get_float64 = get_float

    def get_duration(self, key: str, default: timedelta = timedelta(0)) -> timedelta:
        """Get a duration.

        "30s", "5m", "1h30m", "250ms" are parsed as written. A bare integer
        takes its unit from the key name: *_MS -> milliseconds, *_US ->
        microseconds, *_NS -> nanoseconds, *_MIN -> minutes, *_HOUR -> hours,
        otherwise seconds. Negative bare integers fall back to the default.
        """
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            return default
        try:
            return parsing.parse_duration(full_key, raw)
        except ValueError:
            self._warn("Invalid duration for %s: %s, using default: %s", full_key, raw, default)
            return default

    def get_string_list(self, key: str, default: list[str] | None = None) -> list[str] | None:
        """Get a comma-separated list; "a, b , c" -> ["a", "b", "c"]."""
        raw = self._lookup(self._key(key))
        if not raw:
            return default
        items = parsing.split_list(raw)
        return items if items else default

    def get_int_list(self, key: str, default: list[int] | None = None) -> list[int] | None:
        """Get a comma-separated list of ints.

        Pieces that are not integers are dropped (and logged); the default is
        used only when nothing survives.
        """
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            return default

        result: list[int] = []
        for piece in parsing.split_list(raw):
            try:
                result.append(parsing.parse_int(piece))
            except ValueError:
                self._warn("Invalid int in list for %s: %s", full_key, piece)
        return result if result else default

    def get_url(self, key: str, default: ParseResult | None = None) -> ParseResult | None:
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            return default
        try:
            parsed = urlparse(raw)
            # Port is validated lazily by urllib; force it now.
            _ = parsed.port
        except ValueError as e:
            self._warn("Invalid URL for %s: %s, error: %s", full_key, raw, e)
            return default
        return parsed

    def get_file_path(self, key: str, default: str = "") -> str:
        """Get an existing filesystem path, made absolute.

        A leading "~" is expanded to the home directory. A path that does not
        exist falls back to the default.
        """
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            return default

        if raw.startswith("~"):
            raw = os.path.expanduser("~") + raw[1:]

        try:
            path = Path(os.path.abspath(raw))
        except (OSError, ValueError) as e:
            self._warn("Invalid file path for %s: %s, error: %s", full_key, raw, e)
            return default

        if not path.exists():
            self._warn("File does not exist for %s: %s", full_key, path)
            return default
        return str(path)

    def get_json(self, key: str, model: Any = None) -> Any:
        """Decode a JSON value.

        Unlike the other getters there is no default: an arbitrary structure has
        no meaningful fallback, so failures raise.

        Args:
            key: Variable name (prefix applied).
            model: Optional target type, e.g. a pydantic model or `list[int]`.
                When given, the JSON is validated into it.

        Raises:
            VariableNotSetError: the variable is unset or empty.
            InvalidValueError: the value is not valid JSON, or does not validate.
        """
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            raise VariableNotSetError(full_key)

        try:
            if model is None:
                return json.loads(raw)
            return TypeAdapter(model).validate_json(raw)
        except (json.JSONDecodeError, ValidationError) as e:
            raise InvalidValueError(full_key, raw, f"failed to decode JSON: {e}") from e

    # --- Must-get accessors ---------------------------------------------------

    def must_get_string(self, key: str) -> str:
        full_key = self._key(key)
        raw = self._lookup(full_key)
        if not raw:
            raise VariableNotSetError(full_key)
        return raw

    def must_get_int(self, key: str) -> int:
        raw = self.must_get_string(key)
        try:
            return parsing.parse_int(raw)
        except ValueError as e:
            raise InvalidValueError(self._key(key), raw, "not an integer") from e

    # --- Presence and validation ----------------------------------------------

    def is_set(self, key: str) -> bool:
        """True if the variable exists, even when set to an empty string."""
        return self._store.contains(self._key(key))

    def validate_required(self, keys: Iterable[str]) -> list[str]:
        """Return the prefixed keys that are absent. Never raises.

        Only presence is checked: a key set to a value that will not parse
        still counts as present.
        """
        return [self._key(key) for key in keys if not self.is_set(key)]

    # --- Env files ------------------------------------------------------------

    def load_env_file(self, path: str | os.PathLike[str]) -> None:
        """Load KEY=VALUE lines from `path` into the store.

        Variables that already exist are left alone: the live environment always
        wins over the file. Keys in the file are used as written (no prefix).

        Raises:
            EnvFileError: the file cannot be opened or read.
        """
        try:
            with open(path, encoding="utf-8") as fh:
                lines = fh.readlines()
        except (OSError, UnicodeDecodeError) as e:
            raise EnvFileError(f"failed to read env file {path}: {e}") from e

        for line_num, line in enumerate(lines, start=1):
            try:
                parsed = parsing.parse_env_line(line)
            except ValueError:
                self._warn("Invalid line %d in %s: %s", line_num, path, line.strip())
                continue
            if parsed is None:
                continue

            key, value = parsed
            with self._lock:
                if self._store.contains(key):
                    continue
                try:
                    self._store.set(key, value)
                except (OSError, ValueError) as e:
                    self._warn("Failed to set %s from %s: %s", key, path, e)
                    continue
                if value:
                    self._cache[key] = value

    # --- Mutation and export --------------------------------------------------

    def set_env(self, key: str, value: str) -> None:
        full_key = self._key(key)
        with self._lock:
            self._store.set(full_key, value)
            if value:
                self._cache[full_key] = value
            else:
                self._cache.pop(full_key, None)

    def unset_env(self, key: str) -> None:
        full_key = self._key(key)
        with self._lock:
            self._store.unset(full_key)
            self._cache.pop(full_key, None)

    def clear_cache(self) -> None:
        """Forget cached values. The environment itself is untouched."""
        with self._lock:
            self._cache.clear()

    def export(self) -> dict[str, str]:
        """Snapshot of variables matching the prefix (everything if no prefix)."""
        snapshot = self._store.snapshot()
        if not self.config.prefix:
            return snapshot
        return {k: v for k, v in snapshot.items() if k.startswith(self.config.prefix)}
