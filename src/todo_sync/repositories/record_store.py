from __future__ import annotations

from collections.abc import Mapping
from typing import Generic, TypeVar, cast

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_sync.config import settings
from todo_sync.db_urls import database_dialect
from todo_sync.models import Category, Task
from todo_sync.sync_utils import now_ts


ModelT = TypeVar("ModelT", Task, Category)

_KEY_FIELDS = ("user_id", "device_id", "client_id")
_SERVER_FIELDS = ("id", "created_at", "server_updated_at", "revision")


class RecordStore(Generic[ModelT]):
    """Composite-key persistence for one syncable table.

    Bound to a single session; callers own the transaction boundary.
    Reads always refresh rows from the database, so an update issued through
    SQL is never masked by a stale ORM instance.
    """

    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self.session: AsyncSession = session
        self.model: type[ModelT] = model

    @property
    def table(self) -> sa.Table:
        return cast(sa.Table, getattr(self.model, "__table__"))

    def _dialect(self) -> str:
        bind = self.session.bind
        if bind is not None:
            return bind.dialect.name
        return database_dialect(settings.database_url)

    def _col(self, name: str) -> ColumnElement[object]:
        return cast(ColumnElement[object], self.table.c[name])

    def _key_clause(self, user_id: int, device_id: str, client_id: int) -> ColumnElement[bool]:
        return sa.and_(
            self._col("user_id") == user_id,
            self._col("device_id") == device_id,
            self._col("client_id") == client_id,
        )

    @staticmethod
    def _data_fields(fields: Mapping[str, object]) -> dict[str, object]:
        return {
            k: v for k, v in fields.items() if k not in _KEY_FIELDS and k not in _SERVER_FIELDS
        }

    async def find_by_composite_key(
        self, user_id: int, device_id: str, client_id: int
    ) -> ModelT | None:
        stmt = (
            select(self.model)
            .where(self._key_clause(user_id, device_id, client_id))
            .execution_options(populate_existing=True)
        )
        return (await self.session.exec(stmt)).first()

    async def insert(self, user_id: int, device_id: str, fields: Mapping[str, object]) -> ModelT:
        now = now_ts()
        row = self.model(
            **self._data_fields(fields),
            user_id=user_id,
            device_id=device_id,
            client_id=fields["client_id"],
            created_at=now,
            server_updated_at=now,
            revision=1,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def update_in_place(
        self, user_id: int, device_id: str, client_id: int, fields: Mapping[str, object]
    ) -> int:
        """Overwrite the supplied fields of an existing row.

        Returns the number of rows touched; 0 when no row matches the key.
        """
        values: dict[str, object] = self._data_fields(fields)
        values["server_updated_at"] = now_ts()
        values["revision"] = self.table.c.revision + 1
        result = await self.session.exec(
            sa.update(self.table)
            .where(self._key_clause(user_id, device_id, client_id))
            .values(**values)
        )
        return int(result.rowcount or 0)

    async def conditional_upsert(
        self, user_id: int, device_id: str, fields: Mapping[str, object]
    ) -> tuple[ModelT, bool] | None:
        """Insert, or overwrite when the stored updated_at is not newer.

        One statement, so no other writer can slip between the timestamp check
        and the write. Returns (row, created) or None when the stored row wins.
        """
        dialect = self._dialect()
        if dialect not in {"sqlite", "postgresql"}:
            return await self._locked_upsert(user_id, device_id, fields)

        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            from sqlalchemy.dialects.postgresql import insert as dialect_insert

        table = self.table
        client_id = int(cast(int, fields["client_id"]))
        now = now_ts()
        data = self._data_fields(fields)

        stmt = dialect_insert(table).values(
            **data,
            user_id=user_id,
            device_id=device_id,
            client_id=client_id,
            created_at=now,
            server_updated_at=now,
            revision=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_KEY_FIELDS),
            set_={**data, "server_updated_at": now, "revision": table.c.revision + 1},
            where=table.c.updated_at <= stmt.excluded.updated_at,
        )
        stmt = stmt.returning(table.c.revision)
        written = (await self.session.exec(stmt)).first()
        if written is None:
            return None

        row = await self.find_by_composite_key(user_id, device_id, client_id)
        if row is None:  # pragma: no cover
            raise RuntimeError("upserted row vanished inside its own transaction")
        return row, int(written[0]) == 1

    async def _locked_upsert(
        self, user_id: int, device_id: str, fields: Mapping[str, object]
    ) -> tuple[ModelT, bool] | None:
        # Databases without ON CONFLICT: serialize on the row lock instead.
        client_id = int(cast(int, fields["client_id"]))
        existing = (
            await self.session.exec(
                select(self.model)
                .where(self._key_clause(user_id, device_id, client_id))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).first()
        if existing is None:
            return await self.insert(user_id, device_id, fields), True
        if int(cast(int, fields["updated_at"])) < int(existing.updated_at):
            return None
        await self.update_in_place(user_id, device_id, client_id, fields)
        row = await self.find_by_composite_key(user_id, device_id, client_id)
        if row is None:  # pragma: no cover
            raise RuntimeError("updated row vanished inside its own transaction")
        return row, False

    async def find_all(self, user_id: int, *, include_deleted: bool = False) -> list[ModelT]:
        stmt = select(self.model).where(self._col("user_id") == user_id)
        if not include_deleted:
            stmt = stmt.where(self._col("deleted") == 0)
        stmt = stmt.execution_options(populate_existing=True)
        return list((await self.session.exec(stmt)).all())

    async def find_updated_since(self, user_id: int, since: int) -> list[ModelT]:
        stmt = (
            select(self.model)
            .where(self._col("user_id") == user_id)
            .where(cast(ColumnElement[int], self.table.c.updated_at) > int(since))
            .execution_options(populate_existing=True)
        )
        return list((await self.session.exec(stmt)).all())

    async def count_written_since(
        self, user_id: int, server_since: int, *, exclude_device_id: str | None = None
    ) -> int:
        # Server clock, inclusive: a write in the same second still counts.
        stmt = (
            sa.select(sa.func.count())
            .select_from(self.table)
            .where(self._col("user_id") == user_id)
            .where(cast(ColumnElement[int], self.table.c.server_updated_at) >= int(server_since))
        )
        if exclude_device_id is not None:
            stmt = stmt.where(self._col("device_id") != exclude_device_id)
        return int((await self.session.exec(stmt)).scalar_one())
