from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal, Protocol

from todo_sync.sync_utils import parse_optional_ts, to_flag


EntityType = Literal["categories", "tasks"]
# Categories first so tasks referencing them land after them in the same batch.
ENTITY_TYPES: tuple[EntityType, ...] = ("categories", "tasks")

Outcome = Literal["accepted_new", "accepted_update", "rejected_conflict"]

MetadataStatus = Literal["success", "failed"]


class SyncValidationError(ValueError):
    """Request is missing something the sync batch needs; nothing was written."""


class Syncable(Protocol):
    @property
    def client_id(self) -> int: ...

    @property
    def updated_at(self) -> int: ...

    @property
    def deleted(self) -> int: ...

    def to_values(self) -> dict[str, object]: ...


@dataclass(frozen=True)
class UpsertResult:
    outcome: Outcome
    # Stored row after an accepted write.
    record: object | None = None
    # Stored row that won against a stale incoming record.
    existing: object | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome != "rejected_conflict"


def _require_client_id(raw: Mapping[str, object]) -> int:
    value = raw.get("client_id")
    if value is None or isinstance(value, bool):
        raise SyncValidationError("client_id is required")
    try:
        return int(value)  # pyright: ignore[reportArgumentType]
    except (TypeError, ValueError):
        raise SyncValidationError(f"client_id must be an integer, got {value!r}") from None


def _optional_int(field: str, value: object | None) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)  # pyright: ignore[reportArgumentType]
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer, got {value!r}") from None


def _optional_str(value: object | None) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class TaskPayload:
    client_id: int
    title: str | None
    description: str | None
    due_date: int | None
    is_completed: int
    completed_at: int | None
    category_id: int | None
    priority: int
    updated_at: int
    deleted: int
    deleted_at: int | None

    @classmethod
    def from_dict(cls, raw: Mapping[str, object], *, now: int) -> "TaskPayload":
        title = raw.get("title")
        return cls(
            client_id=_require_client_id(raw),
            # Left as-is: a missing title is a storage fault, not a default.
            title=None if title is None else str(title),
            description=_optional_str(raw.get("description")),
            due_date=parse_optional_ts("due_date", raw.get("due_date")),
            is_completed=to_flag(raw.get("is_completed")),
            completed_at=parse_optional_ts("completed_at", raw.get("completed_at")),
            category_id=_optional_int("category_id", raw.get("category_id")),
            priority=_optional_int("priority", raw.get("priority")) or 1,
            updated_at=parse_optional_ts("updated_at", raw.get("updated_at")) or now,
            deleted=to_flag(raw.get("deleted")),
            deleted_at=parse_optional_ts("deleted_at", raw.get("deleted_at")),
        )

    def to_values(self) -> dict[str, object]:
        return {
            "client_id": self.client_id,
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at,
            "category_id": self.category_id,
            "priority": self.priority,
            "updated_at": self.updated_at,
            "deleted": self.deleted,
            "deleted_at": self.deleted_at,
        }


@dataclass(frozen=True)
class CategoryPayload:
    client_id: int
    name: str | None
    color: str | None
    updated_at: int
    deleted: int
    deleted_at: int | None

    @classmethod
    def from_dict(cls, raw: Mapping[str, object], *, now: int) -> "CategoryPayload":
        name = raw.get("name")
        return cls(
            client_id=_require_client_id(raw),
            name=None if name is None else str(name),
            color=_optional_str(raw.get("color")),
            updated_at=parse_optional_ts("updated_at", raw.get("updated_at")) or now,
            deleted=to_flag(raw.get("deleted")),
            deleted_at=parse_optional_ts("deleted_at", raw.get("deleted_at")),
        )

    def to_values(self) -> dict[str, object]:
        return {
            "client_id": self.client_id,
            "name": self.name,
            "color": self.color,
            "updated_at": self.updated_at,
            "deleted": self.deleted,
            "deleted_at": self.deleted_at,
        }
