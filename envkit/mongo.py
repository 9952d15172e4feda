"""MongoDB settings and a thin collection wrapper.

This module has two jobs:

1) Turn environment variables into a validated `MongoSettings` and a
   configured `MongoClient`.
2) Wrap a pymongo collection so that inserts and updates get automatic
   timestamps, and every call runs under the configured operation timeout.

Everything else (pooling, retries, server selection, TLS) is pymongo's job.

Environment variables read by `load_mongo_settings()` (default prefix MONGO_):

    URI or URL               connection string; if both are empty it is built
                             from HOST, PORT, USERNAME, PASSWORD, AUTH_SOURCE
    DATABASE or DB           database name (required)
    MAX_POOL_SIZE            default 100
    MIN_POOL_SIZE            default 10
    MAX_CONN_IDLE_TIME       default 5m
    CONNECT_TIMEOUT          default 10s
    SOCKET_TIMEOUT           default 30s
    SERVER_SELECTION_TIMEOUT default 10s
    OPERATION_TIMEOUT        default 30s
    RETRY_WRITES             default true
    RETRY_READS              default true
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Iterable
from urllib.parse import quote_plus

import pymongo
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel, Field, ValidationError, model_validator
from pymongo import MongoClient, errors

from .config import DEFAULT_MONGO_PREFIX
from .errors import ConfigurationError, InvalidIdError
from .models import add_updated_at, apply_timestamps, to_mongo, utcnow
from .resolver import Resolver
from .store import EnvStore

log = logging.getLogger(__name__)


class MongoSettings(BaseModel):
    """Validated MongoDB connection settings."""

    uri: str = Field(default="mongodb://localhost:27017", min_length=1)
    database: str = Field(default="test", min_length=1)

    max_pool_size: int = Field(default=100, ge=0)
    min_pool_size: int = Field(default=10, ge=0)
    max_conn_idle_time: timedelta = timedelta(minutes=5)

    connect_timeout: timedelta = timedelta(seconds=10)
    socket_timeout: timedelta = timedelta(seconds=30)
    server_selection_timeout: timedelta = timedelta(seconds=10)
    operation_timeout: timedelta = timedelta(seconds=30)

    retry_writes: bool = True
    retry_reads: bool = True

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> MongoSettings:
        # max_pool_size == 0 means "unbounded" to pymongo.
        if self.max_pool_size > 0 and self.min_pool_size > self.max_pool_size:
            raise ValueError(
                f"min_pool_size ({self.min_pool_size}) cannot be greater than "
                f"max_pool_size ({self.max_pool_size})"
            )
        return self

    def client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for `pymongo.MongoClient`."""
        return {
            "maxPoolSize": self.max_pool_size,
            "minPoolSize": self.min_pool_size,
            "maxIdleTimeMS": _ms(self.max_conn_idle_time),
            "connectTimeoutMS": _ms(self.connect_timeout),
            "socketTimeoutMS": _ms(self.socket_timeout),
            "serverSelectionTimeoutMS": _ms(self.server_selection_timeout),
            "retryWrites": self.retry_writes,
            "retryReads": self.retry_reads,
        }


def _ms(value: timedelta) -> int:
    return int(value.total_seconds() * 1000)


def build_mongo_uri(
    host: str = "localhost",
    port: int = 27017,
    username: str = "",
    password: str = "",
    auth_source: str = "admin",
) -> str:
    """Build a connection string from parts.

    Credentials are only included when both username and password are given,
    and are percent-escaped as pymongo requires.
    """
    if username and password:
        return (
            f"mongodb://{quote_plus(username)}:{quote_plus(password)}@{host}:{port}/"
            f"?authSource={quote_plus(auth_source)}"
        )
    return f"mongodb://{host}:{port}"


def load_mongo_settings(prefix: str = DEFAULT_MONGO_PREFIX, store: EnvStore | None = None) -> MongoSettings:
    """Read `MongoSettings` from prefixed environment variables.

    Raises:
        ConfigurationError: the resulting settings are invalid (e.g. no database).
    """
    env = Resolver(prefix=prefix, silent=True, store=store)
    defaults = MongoSettings()

    uri = env.get_string("URI") or env.get_string("URL")
    if not uri:
        uri = build_mongo_uri(
            host=env.get_string("HOST", "localhost"),
            port=env.get_int("PORT", 27017),
            username=env.get_string("USERNAME"),
            password=env.get_string("PASSWORD"),
            auth_source=env.get_string("AUTH_SOURCE", "admin"),
        )

    try:
        return MongoSettings(
            uri=uri,
            database=env.get_string("DATABASE", env.get_string("DB")),
            max_pool_size=env.get_int("MAX_POOL_SIZE", defaults.max_pool_size),
            min_pool_size=env.get_int("MIN_POOL_SIZE", defaults.min_pool_size),
            max_conn_idle_time=env.get_duration("MAX_CONN_IDLE_TIME", defaults.max_conn_idle_time),
            connect_timeout=env.get_duration("CONNECT_TIMEOUT", defaults.connect_timeout),
            socket_timeout=env.get_duration("SOCKET_TIMEOUT", defaults.socket_timeout),
            server_selection_timeout=env.get_duration(
                "SERVER_SELECTION_TIMEOUT", defaults.server_selection_timeout
            ),
            operation_timeout=env.get_duration("OPERATION_TIMEOUT", defaults.operation_timeout),
            retry_writes=env.get_bool("RETRY_WRITES", defaults.retry_writes),
            retry_reads=env.get_bool("RETRY_READS", defaults.retry_reads),
        )
    except ValidationError as e:
        raise ConfigurationError(f"invalid MongoDB configuration from environment: {e}") from e


def create_client(settings: MongoSettings, **kwargs: Any) -> MongoClient:
    """Create a `MongoClient` from settings. Extra kwargs go straight to pymongo."""
    return MongoClient(settings.uri, **{**settings.client_kwargs(), **kwargs})


def ping(client: MongoClient) -> None:
    """Round-trip to the server. Raises a pymongo error if it is unreachable."""
    client.admin.command("ping")


def get_collection(settings: MongoSettings, name: str, client: MongoClient | None = None) -> Collection:
    """Return the wrapped collection `name` in the configured database."""
    client = client if client is not None else create_client(settings)
    return Collection(client[settings.database][name], operation_timeout=settings.operation_timeout)


def to_object_id(value: Any) -> ObjectId:
    """Accept an ObjectId or its 24-character hex string.

    Raises:
        InvalidIdError: anything else.
    """
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str):
        try:
            return ObjectId(value)
        except InvalidId as e:
            raise InvalidIdError(f"invalid ObjectId: {value!r}") from e
    raise InvalidIdError(f"unsupported id type: {type(value).__name__}")


class Collection:
    """A pymongo collection with auto-timestamps and a per-call timeout.

    Inserts stamp documents that opt in (see `envkit.models.Timestamped`);
    updates add `updatedAt` to the update document. Results are pymongo's own
    result objects.
    """

    def __init__(self, collection, operation_timeout: timedelta | None = None) -> None:
        self._collection = collection
        self._timeout = operation_timeout.total_seconds() if operation_timeout else None

    @property
    def name(self) -> str:
        return self._collection.name

    @property
    def collection(self):
        """The underlying pymongo collection."""
        return self._collection

    def _deadline(self):
        return pymongo.timeout(self._timeout)

    # --- Inserts --------------------------------------------------------------

    def insert_one(self, document: Any, **kwargs: Any):
        apply_timestamps(document, is_insert=True)
        with self._deadline():
            result = self._collection.insert_one(to_mongo(document), **kwargs)
        _assign_id(document, result.inserted_id)
        return result

    def insert_many(self, documents: Iterable[Any], **kwargs: Any):
        documents = list(documents)
        now = utcnow()
        for doc in documents:
            apply_timestamps(doc, is_insert=True, now=now)

        with self._deadline():
            result = self._collection.insert_many([to_mongo(doc) for doc in documents], **kwargs)
        for doc, inserted_id in zip(documents, result.inserted_ids):
            _assign_id(doc, inserted_id)
        return result

    def insert_if_absent(self, document: Any) -> bool:
        """Insert, treating a duplicate `_id` as already done.

        Returns:
            True if the document was inserted, False if its `_id` already existed.

        Useful for idempotent writes where the `_id` is an external event id:
        processing the same event twice is harmless.
        """
        try:
            self.insert_one(document)
            return True
        except errors.DuplicateKeyError:
            log.info("Duplicate document ignored in %s", self.name)
            return False

    # --- Reads ----------------------------------------------------------------

    def find_one(self, filter: Any = None, *args: Any, **kwargs: Any):
        with self._deadline():
            return self._collection.find_one(filter, *args, **kwargs)

    def find_one_by_id(self, id: Any, *args: Any, **kwargs: Any):
        return self.find_one({"_id": to_object_id(id)}, *args, **kwargs)

    def find(self, filter: Any = None, *args: Any, **kwargs: Any) -> list:
        """Run a query and return all matching documents."""
        with self._deadline():
            return list(self._collection.find(filter, *args, **kwargs))

    def count_documents(self, filter: Any, **kwargs: Any) -> int:
        with self._deadline():
            return self._collection.count_documents(filter, **kwargs)

    # --- Updates --------------------------------------------------------------

    def update_one(self, filter: Any, update: Any, **kwargs: Any):
        with self._deadline():
            return self._collection.update_one(filter, add_updated_at(update), **kwargs)

    def update_one_by_id(self, id: Any, update: Any, **kwargs: Any):
        return self.update_one({"_id": to_object_id(id)}, update, **kwargs)

    def update_many(self, filter: Any, update: Any, **kwargs: Any):
        with self._deadline():
            return self._collection.update_many(filter, add_updated_at(update), **kwargs)

    def replace_one(self, filter: Any, replacement: Any, **kwargs: Any):
        apply_timestamps(replacement, is_insert=False)
        with self._deadline():
            return self._collection.replace_one(filter, to_mongo(replacement), **kwargs)

    # --- Deletes --------------------------------------------------------------

    def delete_one(self, filter: Any, **kwargs: Any):
        with self._deadline():
            return self._collection.delete_one(filter, **kwargs)

    def delete_one_by_id(self, id: Any, **kwargs: Any):
        return self.delete_one({"_id": to_object_id(id)}, **kwargs)

    def delete_many(self, filter: Any, **kwargs: Any):
        with self._deadline():
            return self._collection.delete_many(filter, **kwargs)

    # --- Indexes --------------------------------------------------------------

    def create_index(self, keys: Any, **kwargs: Any) -> str:
        with self._deadline():
            return self._collection.create_index(keys, **kwargs)


def _assign_id(document: Any, inserted_id: Any) -> None:
    # Models get their generated id back; dicts already receive it from pymongo.
    if isinstance(document, BaseModel) and getattr(document, "id", "") is None:
        document.id = inserted_id
