"""Pure string -> value conversions.

Every function here raises `ValueError` on bad input and has no side effects.
Turning a `ValueError` into "use the default" (and deciding whether to log it)
is the caller's job; see `Resolver` and `envkit.helpers`.
"""

from __future__ import annotations

import re
from datetime import timedelta

_TRUE_VALUES = frozenset({"true", "1", "yes", "y", "t"})
_FALSE_VALUES = frozenset({"false", "0", "no", "n", "f"})

_INT_RE = re.compile(r"[+-]?[0-9]+")

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Characters that mark a value as a duration literal rather than a bare number.
# Both the micro sign (U+00B5) and the Greek mu (U+03BC) are accepted.
_DURATION_MARKERS = frozenset("smhuµμ")

# Duration literal units, expressed in microseconds.
_DURATION_UNITS: dict[str, float] = {
    "ns": 0.001,
    "us": 1,
    "µs": 1,
    "μs": 1,
    "ms": 1_000,
    "s": 1_000_000,
    "m": 60_000_000,
    "h": 3_600_000_000,
}

_DURATION_PART_RE = re.compile(r"([0-9]+(?:\.[0-9]*)?|\.[0-9]+)(ns|us|µs|μs|ms|s|m|h)")

# Key-name hints for bare integers, checked in this order.
# (substring, suffix, microseconds per unit)
_KEY_UNIT_HINTS: tuple[tuple[str, str, float], ...] = (
    ("_ms", "ms", 1_000),
    ("_us", "us", 1),
    ("_ns", "ns", 0.001),
    ("_min", "min", 60_000_000),
    ("_hour", "hour", 3_600_000_000),
)
_DEFAULT_KEY_UNIT: float = 1_000_000  # seconds

# Largest duration a signed 64-bit nanosecond count can hold (about 292 years).
_MAX_DURATION_US = INT64_MAX / 1_000


def parse_bool(raw: str) -> bool:
    """Parse a boolean spelling, case-insensitively.

    true/1/yes/y/t -> True, false/0/no/n/f -> False.
    """
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {raw!r}")


def parse_int(raw: str) -> int:
    """Parse a base-10 integer with an optional sign.

    Stricter than `int()`: ASCII digits only, no surrounding whitespace and no
    underscores.
    """
    if not _INT_RE.fullmatch(raw):
        raise ValueError(f"invalid integer: {raw!r}")
    return int(raw)


def parse_float(raw: str) -> float:
    if not raw.isascii() or raw != raw.strip() or "_" in raw:
        raise ValueError(f"invalid float: {raw!r}")
    return float(raw)


def parse_int64(raw: str) -> int:
    """Like `parse_int`, but the value must fit in a signed 64-bit integer."""
    value = parse_int(raw)
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"integer out of 64-bit range: {raw!r}")
    return value


def parse_duration_literal(raw: str) -> timedelta:
    """Parse a duration literal such as "30s", "1h30m", "1.5s", "250ms", "-2m".

    Grammar: optional sign, then one or more <number><unit> groups. A bare "0"
    is also accepted.
    """
    text = raw
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f"invalid duration: {raw!r}")

    total_us = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART_RE.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration: {raw!r}")
        number, unit = match.groups()
        total_us += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    return _micros_to_timedelta(sign * total_us, raw)


def _micros_to_timedelta(micros: float, raw: str) -> timedelta:
    if abs(micros) > _MAX_DURATION_US:
        raise ValueError(f"duration out of range: {raw!r}")
    return timedelta(microseconds=micros)


def _key_unit_micros(key: str) -> float:
    lowered = key.lower()
    for substring, suffix, micros in _KEY_UNIT_HINTS:
        if substring in lowered or lowered.endswith(suffix):
            return micros
    return _DEFAULT_KEY_UNIT


def infer_duration_unit(key: str) -> timedelta:
    """Guess the unit of a bare integer duration from its key name.

    TIMEOUT_MS -> milliseconds, POLL_US -> microseconds, WAIT_NS -> nanoseconds,
    TTL_MIN -> minutes, WINDOW_HOUR -> hours, anything else -> seconds.

    This is a heuristic: the checks run in a fixed order and the first match
    wins, so e.g. "STATUS" (ends in "us") is read as microseconds.
    A nanosecond unit is below timedelta resolution and comes back as zero;
    `parse_duration` scales bare integers before rounding.
    """
    return timedelta(microseconds=_key_unit_micros(key))


def parse_duration(key: str, raw: str) -> timedelta:
    """Parse a duration value, using `key` to pick a unit for bare integers.

    Values carrying a unit letter ("30s") are parsed as literals and the key is
    ignored. Bare integers must be non-negative.
    """
    if any(ch in _DURATION_MARKERS for ch in raw):
        return parse_duration_literal(raw)

    amount = parse_int64(raw)
    if amount < 0:
        raise ValueError(f"negative duration: {raw!r}")

    # Multiply in microseconds so nanosecond units round instead of collapsing to 0.
    return _micros_to_timedelta(amount * _key_unit_micros(key), raw)


def split_list(raw: str) -> list[str]:
    """Split on commas, trim each piece and drop the empty ones."""
    return [piece.strip() for piece in raw.split(",") if piece.strip()]


def strip_quotes(value: str) -> str:
    """Remove one matching pair of enclosing single or double quotes."""
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_env_line(line: str) -> tuple[str, str] | None:
    """Parse one line of an env file.

    Returns:
        (key, value) for an assignment, None for a blank line or comment.

    Raises:
        ValueError: the line is not blank, not a comment, and has no "=" or an
            empty key.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    key, sep, value = stripped.partition("=")
    key = key.strip()
    if not sep:
        raise ValueError(f"not a KEY=VALUE line: {stripped!r}")
    if not key:
        raise ValueError(f"empty key: {stripped!r}")

    return key, strip_quotes(value.strip())
