from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import ClassVar, Generic

from todo_sync.domain.syncable import (
    CategoryPayload,
    EntityType,
    Syncable,
    TaskPayload,
    UpsertResult,
)
from todo_sync.models import Category, Task
from todo_sync.repositories.record_store import ModelT, RecordStore
from todo_sync.sync_utils import now_ts

logger = logging.getLogger(__name__)


class EntityReconciler(Generic[ModelT]):
    """Whole-record last-write-wins for one entity type.

    Equal timestamps favour the incoming record, so retrying an upload
    re-applies the same data instead of reporting a conflict.
    """

    entity_type: ClassVar[EntityType]

    def __init__(self, store: RecordStore[ModelT]) -> None:
        self.store: RecordStore[ModelT] = store

    def normalize(self, incoming: Mapping[str, object], *, now: int) -> Syncable:
        raise NotImplementedError

    async def upsert(
        self, user_id: int, device_id: str, incoming: Mapping[str, object]
    ) -> UpsertResult:
        normalized = self.normalize(incoming, now=now_ts())
        written = await self.store.conditional_upsert(
            user_id, device_id, normalized.to_values()
        )
        if written is None:
            existing = await self.store.find_by_composite_key(
                user_id, device_id, normalized.client_id
            )
            logger.debug(
                "%s conflict user_id=%s device_id=%s client_id=%s incoming=%s stored=%s",
                self.entity_type,
                user_id,
                device_id,
                normalized.client_id,
                normalized.updated_at,
                getattr(existing, "updated_at", None),
            )
            return UpsertResult(outcome="rejected_conflict", existing=existing)

        row, created = written
        return UpsertResult(outcome="accepted_new" if created else "accepted_update", record=row)


class TaskReconciler(EntityReconciler[Task]):
    entity_type: ClassVar[EntityType] = "tasks"

    def normalize(self, incoming: Mapping[str, object], *, now: int) -> Syncable:
        return TaskPayload.from_dict(incoming, now=now)


class CategoryReconciler(EntityReconciler[Category]):
    entity_type: ClassVar[EntityType] = "categories"

    def normalize(self, incoming: Mapping[str, object], *, now: int) -> Syncable:
        return CategoryPayload.from_dict(incoming, now=now)
