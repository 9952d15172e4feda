"""Exception types raised by envkit.

Most resolution failures never reach the caller: a malformed or missing value
silently becomes the caller's default. The exceptions below cover the cases
where there is no sensible default:

- a JSON value that is missing or does not decode
- a "must get" accessor on a missing/invalid value
- required variables that are absent at construction time
- an env file that cannot be read
- driver settings (Mongo/Kafka) that fail validation
"""

from __future__ import annotations


class EnvError(Exception):
    """Base class for every envkit error."""


class VariableNotSetError(EnvError):
    """An environment variable is unset or empty."""

    def __init__(self, key: str) -> None:
        super().__init__(f"environment variable {key} is not set")
        self.key = key


class InvalidValueError(EnvError):
    """An environment variable is set but cannot be converted."""

    def __init__(self, key: str, value: str, reason: str = "") -> None:
        message = f"invalid value for {key}: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.key = key
        self.value = value


class EnvFileError(EnvError):
    """An env file could not be opened or read."""


class ConfigurationError(EnvError):
    """Configuration is unusable (missing keys, failed settings validation)."""


class MissingRequiredError(ConfigurationError):
    """One or more required variables are absent.

    `missing` holds every absent key (prefix applied), in the order they were
    requested, not just the first one found.
    """

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"missing required environment variables: {missing}")
        self.missing = list(missing)


class InvalidIdError(EnvError):
    """A value cannot be converted to a MongoDB ObjectId."""


def is_not_set(err: BaseException) -> bool:
    """Return True if `err` means a variable was not set."""
    return isinstance(err, VariableNotSetError)


def is_invalid_value(err: BaseException) -> bool:
    """Return True if `err` means a variable held an unusable value."""
    return isinstance(err, InvalidValueError)
