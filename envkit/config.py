"""envkit configuration.

Two kinds of configuration live here:

- `ResolverConfig`: the immutable options a `Resolver` is built from.
- Module-level defaults shared by the driver adapters (env prefixes).

Keeping them in one place makes it easy to see, at a glance, which knobs the
library exposes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

# --- Driver adapter prefixes --------------------------------------------------
# `load_mongo_settings()` reads MONGO_URI, MONGO_DATABASE, ...
DEFAULT_MONGO_PREFIX: str = "MONGO_"

# `load_kafka_settings()` reads KAFKA_BROKERS, KAFKA_CLIENT_ID, ...
DEFAULT_KAFKA_PREFIX: str = "KAFKA_"


class ResolverConfig(BaseModel):
    """Options for a `Resolver`.

    Fields:
        prefix: Prepended to every key before lookup ("APP_" + "PORT").
        silent: Suppress diagnostics about values that fail to parse.
        required: Keys that must be present when the resolver is built.
        env_file: Optional KEY=VALUE file loaded before validation.
        env_file_required: If True, a failure to read `env_file` raises
            instead of being logged and ignored.

    The model is frozen: once a resolver exists its configuration never changes.
    """

    model_config = ConfigDict(frozen=True)

    prefix: str = ""
    silent: bool = False
    required: tuple[str, ...] = ()
    env_file: str | None = None
    env_file_required: bool = False

    @field_validator("required", mode="before")
    @classmethod
    def _coerce_required(cls, value):
        # Accept a single key as well as any iterable of keys.
        if isinstance(value, str):
            return (value,)
        return tuple(value)
