"""Pydantic document models and the auto-timestamp capability.

A document opts into automatic timestamps by providing four methods:

    get_created_at() / set_created_at(dt)
    get_updated_at() / set_updated_at(dt)

`TimestampedDocument` implements them for you. Anything else (plain dicts,
`PlainDocument`, your own classes without those methods) is stored as-is.

Why a capability check instead of a base class?
- Existing models can opt in by adding four methods, without changing their
  inheritance.
- The collection wrapper only needs to ask "can this document be stamped?".
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


@runtime_checkable
class Timestamped(Protocol):
    def get_created_at(self) -> datetime | None: ...

    def set_created_at(self, value: datetime) -> None: ...

    def get_updated_at(self) -> datetime | None: ...

    def set_updated_at(self, value: datetime) -> None: ...


class PlainDocument(BaseModel):
    """A document with just an `_id`.

    Fields:
        id: Stored as `_id`. Left as None until MongoDB assigns one on insert.
    """

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    id: Any = Field(default=None, alias="_id")


class TimestampedDocument(PlainDocument):
    """A document that gets `createdAt`/`updatedAt` filled in automatically.

    Fields:
        created_at: Stored as `createdAt`. Set on insert if still empty.
        updated_at: Stored as `updatedAt`. Set on insert if empty, and on every update.
    """

    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    def get_created_at(self) -> datetime | None:
        return self.created_at

    def set_created_at(self, value: datetime) -> None:
        self.created_at = value

    def get_updated_at(self) -> datetime | None:
        return self.updated_at

    def set_updated_at(self, value: datetime) -> None:
        self.updated_at = value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def apply_timestamps(document: Any, is_insert: bool, now: datetime | None = None) -> bool:
    """Stamp `document` if it supports timestamps.

    On insert, empty createdAt/updatedAt are set (values already present are
    kept). On update, updatedAt is always refreshed.

    Returns:
        True if the document was timestamped, False if it does not opt in.
    """
    if not isinstance(document, Timestamped):
        return False

    now = now or utcnow()
    if is_insert:
        if document.get_created_at() is None:
            document.set_created_at(now)
        if document.get_updated_at() is None:
            document.set_updated_at(now)
    else:
        document.set_updated_at(now)
    return True


def to_mongo(document: Any) -> Any:
    """Convert a pydantic model to a BSON-ready dict; pass mappings through.

    Unset fields (None) are dropped so MongoDB can assign `_id` itself.
    """
    if isinstance(document, BaseModel):
        return document.model_dump(by_alias=True, exclude_none=True)
    return document


def add_updated_at(update: Any, now: datetime | None = None) -> Any:
    """Return a copy of an update document with `updatedAt` added.

    - {"$set": {...}}          -> updatedAt added inside $set (unless present)
    - {"$inc": {...}}          -> a $set with updatedAt is added
    - {"name": "x"} (no $ ops) -> updatedAt added at the top level

    Aggregation pipelines (lists) and other non-mappings are returned unchanged.
    The caller's dict is never mutated.
    """
    if not isinstance(update, Mapping):
        return update

    now = now or utcnow()
    result = dict(update)

    if "$set" in result:
        set_doc = result["$set"]
        if isinstance(set_doc, Mapping) and "updatedAt" not in set_doc:
            result["$set"] = {**set_doc, "updatedAt": now}
    elif any(str(key).startswith("$") for key in result):
        result["$set"] = {"updatedAt": now}
    elif "updatedAt" not in result:
        result["updatedAt"] = now

    return result
