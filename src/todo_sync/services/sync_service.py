from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, cast

from sqlmodel.ext.asyncio.session import AsyncSession

from todo_sync.domain.syncable import ENTITY_TYPES, EntityType, SyncValidationError
from todo_sync.models import Category, Task
from todo_sync.repositories.record_store import RecordStore
from todo_sync.services.reconciler import CategoryReconciler, EntityReconciler, TaskReconciler
from todo_sync.services.sync_metadata_service import SyncMetadataTracker

logger = logging.getLogger(__name__)

DOWNLOAD_ENTITY = "download"
UPLOAD_ENTITY = "upload"


def serialize_task(row: Task) -> dict[str, object]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "device_id": row.device_id,
        "client_id": row.client_id,
        "title": row.title,
        "description": row.description,
        "due_date": row.due_date,
        "is_completed": row.is_completed,
        "completed_at": row.completed_at,
        "category_id": row.category_id,
        "priority": row.priority,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
        "deleted": row.deleted,
        "deleted_at": row.deleted_at,
    }


def serialize_category(row: Category) -> dict[str, object]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "device_id": row.device_id,
        "client_id": row.client_id,
        "name": row.name,
        "color": row.color,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
        "deleted": row.deleted,
        "deleted_at": row.deleted_at,
    }


def _serialize(entity_type: EntityType, row: object) -> dict[str, object]:
    if entity_type == "tasks":
        return serialize_task(row)  # pyright: ignore[reportArgumentType]
    return serialize_category(row)  # pyright: ignore[reportArgumentType]


class SyncOrchestrator:
    """Upload/download cycles for one device.

    Notes:
    - Every call opens its own transaction (session.begin()); the session must
      not already be inside one.
    - A failed upload leaves no partial writes; the failure is recorded in
      sync metadata afterwards, in a separate transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        categories: CategoryReconciler | None = None,
        tasks: TaskReconciler | None = None,
        metadata: SyncMetadataTracker | None = None,
    ) -> None:
        self.session: AsyncSession = session
        self.reconcilers: dict[EntityType, EntityReconciler[Any]] = {
            "categories": categories or CategoryReconciler(RecordStore(session, Category)),
            "tasks": tasks or TaskReconciler(RecordStore(session, Task)),
        }
        self.metadata: SyncMetadataTracker = metadata or SyncMetadataTracker(session)

    async def _end_autobegun(self) -> None:
        # Earlier reads in the request (auth, device lookup) autobegin a transaction.
        if self.session.in_transaction():
            await self.session.commit()

    async def upload(
        self, *, user_id: int, device_id: str, data: Mapping[str, object] | None
    ) -> dict[str, dict[str, int]]:
        if not device_id or data is None:
            raise SyncValidationError("device_id and data are required")
        if not isinstance(data, Mapping):
            raise SyncValidationError("data must be an object")

        uploaded: dict[str, int] = {}
        conflicts: dict[str, int] = {}
        batches: list[tuple[EntityType, list[Mapping[str, object]]]] = []
        for entity_type in ENTITY_TYPES:
            records = data.get(entity_type)
            if not isinstance(records, list):
                continue
            if not all(isinstance(record, Mapping) for record in records):
                raise SyncValidationError(f"{entity_type} entries must be objects")
            uploaded[entity_type] = 0
            conflicts[entity_type] = 0
            if records:
                batches.append((entity_type, cast(list[Mapping[str, object]], records)))

        await self._end_autobegun()
        try:
            async with self.session.begin():
                for entity_type, batch in batches:
                    reconciler = self.reconcilers[entity_type]
                    for record in batch:
                        result = await reconciler.upsert(user_id, device_id, record)
                        if result.accepted:
                            uploaded[entity_type] += 1
                        else:
                            conflicts[entity_type] += 1

                    # Conflicts are a normal outcome; only a fault marks the batch failed.
                    await self.metadata.record_outcome(user_id, device_id, entity_type, "success")
        except Exception as exc:
            logger.warning(
                "sync upload failed user_id=%s device_id=%s error=%s", user_id, device_id, exc
            )
            failed_types = [entity_type for entity_type, _ in batches] or [UPLOAD_ENTITY]
            await self.metadata.record_outcome_best_effort(
                user_id, device_id, failed_types, "failed", str(exc)
            )
            raise

        logger.info(
            "sync upload completed user_id=%s device_id=%s uploaded=%s conflicts=%s",
            user_id,
            device_id,
            uploaded,
            conflicts,
        )
        return {"uploaded": uploaded, "conflicts": conflicts}

    async def download(
        self, *, user_id: int, device_id: str, since: int = 0
    ) -> dict[str, list[dict[str, object]]]:
        """Full snapshot when since <= 0, otherwise rows with updated_at > since.

        Scoped to the user, not the device, and tombstones are always included
        so clients can purge them locally.
        """
        if not device_id:
            raise SyncValidationError("device_id is required")
        since_ts = int(since or 0)

        data: dict[str, list[dict[str, object]]] = {}
        await self._end_autobegun()
        try:
            async with self.session.begin():
                for entity_type in ENTITY_TYPES:
                    store = self.reconcilers[entity_type].store
                    if since_ts > 0:
                        rows = await store.find_updated_since(user_id, since_ts)
                    else:
                        rows = await store.find_all(user_id, include_deleted=True)
                    data[entity_type] = [_serialize(entity_type, row) for row in rows]

                await self.metadata.record_outcome(user_id, device_id, DOWNLOAD_ENTITY, "success")
        except Exception as exc:
            logger.warning(
                "sync download failed user_id=%s device_id=%s error=%s", user_id, device_id, exc
            )
            await self.metadata.record_outcome_best_effort(
                user_id, device_id, [DOWNLOAD_ENTITY], "failed", str(exc)
            )
            raise

        logger.info(
            "sync download completed user_id=%s device_id=%s since=%s categories=%s tasks=%s",
            user_id,
            device_id,
            since_ts,
            len(data["categories"]),
            len(data["tasks"]),
        )
        return data

    async def status(self, *, user_id: int, device_id: str) -> dict[str, object]:
        if not device_id:
            raise SyncValidationError("device_id is required")

        await self._end_autobegun()
        async with self.session.begin():
            last_sync = await self.metadata.get_status(user_id, device_id)

            # Other devices wrote after this device's last successful download.
            last_download = last_sync.get(DOWNLOAD_ENTITY)
            since = 0
            if last_download is not None and last_download["status"] == "success":
                since = int(last_download["last_sync_at"])  # pyright: ignore[reportArgumentType]
            pending_changes = False
            for entity_type in ENTITY_TYPES:
                store = self.reconcilers[entity_type].store
                if await store.count_written_since(user_id, since, exclude_device_id=device_id):
                    pending_changes = True
                    break

        return {"last_sync": last_sync, "pending_changes": pending_changes}
