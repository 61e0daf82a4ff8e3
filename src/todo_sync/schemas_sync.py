from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _SyncRecordIn(BaseModel):
    # Older clients send extra local-only columns; ignore them.
    model_config = ConfigDict(extra="ignore")

    client_id: int
    updated_at: int | None = None
    deleted: bool | int | None = None
    deleted_at: int | None = None


class TaskIn(_SyncRecordIn):
    title: str | None = None
    description: str | None = None
    due_date: int | None = None
    is_completed: bool | int | None = None
    completed_at: int | None = None
    category_id: int | None = None
    priority: int | None = None


class CategoryIn(_SyncRecordIn):
    name: str | None = None
    color: str | None = None


class SyncUploadData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    categories: list[CategoryIn] | None = None
    tasks: list[TaskIn] | None = None

    def to_batch(self) -> dict[str, Any]:
        batch: dict[str, Any] = {}
        if self.categories is not None:
            batch["categories"] = [c.model_dump(exclude_unset=True) for c in self.categories]
        if self.tasks is not None:
            batch["tasks"] = [t.model_dump(exclude_unset=True) for t in self.tasks]
        return batch


class SyncUploadRequest(BaseModel):
    device_id: str = Field(min_length=1, max_length=128)
    # Client's own clock at upload time; informational only.
    sync_timestamp: int | None = None
    data: SyncUploadData


class SyncUploadResult(BaseModel):
    uploaded: dict[str, int] = Field(default_factory=dict)
    conflicts: dict[str, int] = Field(default_factory=dict)
    sync_timestamp: int


class SyncEntityStatus(BaseModel):
    last_sync_at: int
    status: str
    sync_count: int
    error_count: int


class SyncStatusResult(BaseModel):
    last_sync: dict[str, SyncEntityStatus] = Field(default_factory=dict)
    server_timestamp: int
    pending_changes: bool = False
