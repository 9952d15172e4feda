"""envkit: typed environment configuration, plus MongoDB and Kafka adapters.

    from envkit import Resolver

    env = Resolver(prefix="APP_", env_file=".env", required=["DATABASE_URL"])
    port = env.get_int("PORT", 8080)

The driver adapters live in `envkit.mongo` and `envkit.kafka` and are imported
on demand, so using the resolver alone does not import pymongo or confluent-kafka.
"""

from __future__ import annotations

import logging

from .config import ResolverConfig
from .errors import (
    ConfigurationError,
    EnvError,
    EnvFileError,
    InvalidIdError,
    InvalidValueError,
    MissingRequiredError,
    VariableNotSetError,
    is_invalid_value,
    is_not_set,
)
from .helpers import (
    expand_env,
    get_all_env_with_prefix,
    get_env,
    get_env_bool,
    get_env_duration,
    get_env_float,
    get_env_int,
    get_env_int64,
    get_env_int_list,
    get_env_or_default,
    get_env_port,
    get_env_string_list,
    get_env_url,
    get_env_with_fallback,
    is_env_set,
    load_env_file,
    must_get_env,
    must_get_env_bool,
    must_get_env_int,
    set_env_if_not_set,
    validate_required,
)
from .resolver import Resolver
from .store import EnvStore, MemoryEnvStore, OsEnvStore

# Library convention: stay quiet unless the application configures logging.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "EnvError",
    "EnvFileError",
    "EnvStore",
    "InvalidIdError",
    "InvalidValueError",
    "MemoryEnvStore",
    "MissingRequiredError",
    "OsEnvStore",
    "Resolver",
    "ResolverConfig",
    "VariableNotSetError",
    "expand_env",
    "get_all_env_with_prefix",
    "get_env",
    "get_env_bool",
    "get_env_duration",
    "get_env_float",
    "get_env_int",
    "get_env_int64",
    "get_env_int_list",
    "get_env_or_default",
    "get_env_port",
    "get_env_string_list",
    "get_env_url",
    "get_env_with_fallback",
    "is_env_set",
    "is_invalid_value",
    "is_not_set",
    "load_env_file",
    "must_get_env",
    "must_get_env_bool",
    "must_get_env_int",
    "set_env_if_not_set",
    "validate_required",
]
