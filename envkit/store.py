"""Key-value views over environment variables.

The process environment is global, mutable state shared by everything in the
process. Resolvers never touch `os.environ` directly; they go through an
`EnvStore` so that:

- tests can swap in an in-memory store instead of mutating the real environment
- concurrent writers go through one lock instead of racing on `os.environ`
"""

from __future__ import annotations

import os
import threading
from typing import Protocol, runtime_checkable


@runtime_checkable
class EnvStore(Protocol):
    """The operations a resolver needs from an environment."""

    def get(self, key: str) -> str | None: ...

    def contains(self, key: str) -> bool: ...

    def set(self, key: str, value: str) -> None: ...

    def unset(self, key: str) -> None: ...

    def snapshot(self) -> dict[str, str]: ...


# Shared by every OsEnvStore: there is only one process environment.
_os_env_lock = threading.RLock()


class OsEnvStore:
    """The live process environment."""

    def get(self, key: str) -> str | None:
        return os.environ.get(key)

    def contains(self, key: str) -> bool:
        return key in os.environ

    def set(self, key: str, value: str) -> None:
        with _os_env_lock:
            os.environ[key] = value

    def unset(self, key: str) -> None:
        with _os_env_lock:
            os.environ.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        with _os_env_lock:
            return dict(os.environ)


class MemoryEnvStore:
    """An isolated, in-memory environment.

    Useful in tests and for consumers that want configuration without touching
    the real process environment.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._lock = threading.RLock()
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._values

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def unset(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)
