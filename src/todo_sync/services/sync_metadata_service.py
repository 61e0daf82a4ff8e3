from __future__ import annotations

import logging
from collections.abc import Iterable

import sqlalchemy as sa
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_sync.domain.syncable import MetadataStatus
from todo_sync.models import SyncMetadata
from todo_sync.sync_utils import now_ts

logger = logging.getLogger(__name__)


class SyncMetadataTracker:
    """Cumulative per (user, device, entity_type) sync bookkeeping.

    Counters only ever grow; the row is created by the first attempt and
    updated in place afterwards.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session: AsyncSession = session

    async def record_outcome(
        self,
        user_id: int,
        device_id: str,
        entity_type: str,
        status: MetadataStatus,
        error: str | None = None,
    ) -> None:
        table = SQLModel.metadata.tables["sync_metadata"]
        now = now_ts()
        failed = 1 if status == "failed" else 0

        values: dict[str, object] = {
            "user_id": user_id,
            "device_id": device_id,
            "entity_type": entity_type,
            "last_sync_at": now,
            "last_sync_status": status,
            "sync_count": 1,
            "error_count": failed,
            "last_error": error,
            "created_at": now,
            "updated_at": now,
        }
        set_: dict[str, object] = {
            "last_sync_at": now,
            "last_sync_status": status,
            "sync_count": table.c.sync_count + 1,
            "error_count": table.c.error_count + failed,
            "last_error": error,
            "updated_at": now,
        }

        bind = self.session.bind
        dialect = bind.dialect.name if bind is not None else ""
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert

            stmt = dialect_insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "device_id", "entity_type"], set_=set_
            )
            await self.session.exec(stmt)
        elif dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert

            stmt = dialect_insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "device_id", "entity_type"], set_=set_
            )
            await self.session.exec(stmt)
        else:
            row = await self.get(user_id, device_id, entity_type)
            if row is None:
                await self.session.exec(sa.insert(table).values(**values))
            else:
                await self.session.exec(
                    sa.update(table).where(table.c.id == row.id).values(**set_)
                )

    async def record_outcome_best_effort(
        self,
        user_id: int,
        device_id: str,
        entity_types: Iterable[str],
        status: MetadataStatus,
        error: str | None = None,
    ) -> None:
        """Record outcomes in a fresh transaction; log instead of raising."""
        try:
            if self.session.in_transaction():
                # Whatever the caller had open failed; never commit it here.
                await self.session.rollback()
            async with self.session.begin():
                for entity_type in entity_types:
                    await self.record_outcome(user_id, device_id, entity_type, status, error)
        except Exception:
            logger.warning(
                "sync metadata update failed user_id=%s device_id=%s status=%s",
                user_id,
                device_id,
                status,
                exc_info=True,
            )

    async def get(self, user_id: int, device_id: str, entity_type: str) -> SyncMetadata | None:
        return (
            await self.session.exec(
                select(SyncMetadata)
                .where(SyncMetadata.user_id == user_id)
                .where(SyncMetadata.device_id == device_id)
                .where(SyncMetadata.entity_type == entity_type)
                .execution_options(populate_existing=True)
            )
        ).first()

    async def get_status(self, user_id: int, device_id: str) -> dict[str, dict[str, object]]:
        rows = (
            await self.session.exec(
                select(SyncMetadata)
                .where(SyncMetadata.user_id == user_id)
                .where(SyncMetadata.device_id == device_id)
                .execution_options(populate_existing=True)
            )
        ).all()
        return {
            row.entity_type: {
                "last_sync_at": row.last_sync_at,
                "status": row.last_sync_status,
                "sync_count": row.sync_count,
                "error_count": row.error_count,
            }
            for row in rows
        }
