from __future__ import annotations

from pathlib import Path

import pytest
from sqlmodel import select

from todo_sync.config import settings
from todo_sync.db import init_db, reset_engine_cache, session_scope
from todo_sync.models import Category, Task, User
from todo_sync.repositories.record_store import RecordStore
from todo_sync.services.reconciler import CategoryReconciler, TaskReconciler


async def _setup(tmp_path: Path, name: str) -> int:
    settings.database_url = f"sqlite:///{tmp_path / name}"
    reset_engine_cache()
    await init_db()

    async with session_scope() as session:
        user = User(username=f"u_{name}", api_token=f"tok-{name}", is_active=True)
        session.add(user)
        await session.commit()
        assert user.id is not None
        return int(user.id)


async def _task_titles(user_id: int) -> list[str]:
    async with session_scope() as session:
        rows = (await session.exec(select(Task).where(Task.user_id == user_id))).all()
        return [r.title for r in rows]


@pytest.mark.anyio
async def test_upsert_new_then_newer_update(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "reconcile_update.db")

    async with session_scope() as session:
        reconciler = TaskReconciler(RecordStore(session, Task))
        first = await reconciler.upsert(
            user_id, "device-123", {"client_id": 1, "title": "Original", "updated_at": 1000}
        )
        assert first.outcome == "accepted_new"
        second = await reconciler.upsert(
            user_id, "device-123", {"client_id": 1, "title": "Updated", "updated_at": 2000}
        )
        assert second.outcome == "accepted_update"
        assert isinstance(second.record, Task)
        assert second.record.title == "Updated"
        assert second.record.updated_at == 2000
        assert second.record.revision == 2
        await session.commit()

    assert await _task_titles(user_id) == ["Updated"]


@pytest.mark.anyio
async def test_stale_upload_is_rejected_and_keeps_stored_state(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "reconcile_conflict.db")

    async with session_scope() as session:
        reconciler = TaskReconciler(RecordStore(session, Task))
        await reconciler.upsert(
            user_id, "device-123", {"client_id": 1, "title": "New", "updated_at": 2000}
        )
        result = await reconciler.upsert(
            user_id, "device-123", {"client_id": 1, "title": "Stale", "updated_at": 1000}
        )
        assert result.outcome == "rejected_conflict"
        assert result.accepted is False
        assert result.record is None
        assert isinstance(result.existing, Task)
        assert result.existing.title == "New"
        assert result.existing.updated_at == 2000
        await session.commit()

    assert await _task_titles(user_id) == ["New"]


@pytest.mark.anyio
@pytest.mark.parametrize("order", [(1000, 2000), (2000, 1000)])
async def test_newer_timestamp_wins_regardless_of_arrival_order(
    tmp_path: Path, order: tuple[int, int]
) -> None:
    user_id = await _setup(tmp_path, f"reconcile_order_{order[0]}.db")
    titles = {1000: "A", 2000: "B"}

    async with session_scope() as session:
        reconciler = TaskReconciler(RecordStore(session, Task))
        for ts in order:
            await reconciler.upsert(
                user_id, "device-1", {"client_id": 1, "title": titles[ts], "updated_at": ts}
            )
        await session.commit()

    assert await _task_titles(user_id) == ["B"]


@pytest.mark.anyio
async def test_equal_timestamp_favours_incoming(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "reconcile_tie.db")

    async with session_scope() as session:
        reconciler = TaskReconciler(RecordStore(session, Task))
        await reconciler.upsert(
            user_id, "device-1", {"client_id": 7, "title": "first", "updated_at": 1500}
        )
        result = await reconciler.upsert(
            user_id, "device-1", {"client_id": 7, "title": "second", "updated_at": 1500}
        )
        assert result.outcome == "accepted_update"
        await session.commit()

    assert await _task_titles(user_id) == ["second"]


@pytest.mark.anyio
async def test_reupload_is_idempotent(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "reconcile_idem.db")
    record = {
        "client_id": 3,
        "title": "Buy milk",
        "description": "2 litres",
        "priority": 2,
        "is_completed": True,
        "updated_at": 1000,
    }

    async with session_scope() as session:
        reconciler = TaskReconciler(RecordStore(session, Task))
        await reconciler.upsert(user_id, "device-1", record)

        snapshots: list[tuple[object, ...]] = []
        for _ in range(2):
            result = await reconciler.upsert(user_id, "device-1", record)
            assert result.outcome == "accepted_update"
            row = result.record
            assert isinstance(row, Task)
            snapshots.append(
                (row.id, row.title, row.description, row.priority, row.is_completed, row.updated_at)
            )
        await session.commit()

    assert snapshots[0] == snapshots[1]
    assert snapshots[0][1:] == ("Buy milk", "2 litres", 2, 1, 1000)

    async with session_scope() as session:
        rows = (await session.exec(select(Task).where(Task.user_id == user_id))).all()
        assert len(rows) == 1


@pytest.mark.anyio
async def test_normalization_fills_defaults(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "reconcile_defaults.db")

    async with session_scope() as session:
        reconciler = TaskReconciler(RecordStore(session, Task))
        result = await reconciler.upsert(user_id, "device-1", {"client_id": 1, "title": "bare"})
        row = result.record
        assert isinstance(row, Task)
        assert row.priority == 1
        assert row.is_completed == 0
        assert row.deleted == 0
        assert row.deleted_at is None
        assert row.description is None
        assert row.category_id is None
        # Missing client timestamp falls back to server time.
        assert row.updated_at > 1_600_000_000
        await session.commit()


@pytest.mark.anyio
async def test_tombstone_and_revive(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "reconcile_tombstone.db")

    async with session_scope() as session:
        store = RecordStore(session, Category)
        reconciler = CategoryReconciler(store)
        await reconciler.upsert(
            user_id,
            "device-1",
            {"client_id": 1, "name": "Work", "color": "#f00", "updated_at": 100},
        )
        deleted = await reconciler.upsert(
            user_id,
            "device-1",
            {"client_id": 1, "name": "Work", "deleted": True, "deleted_at": 200, "updated_at": 200},
        )
        assert deleted.outcome == "accepted_update"

        assert await store.find_all(user_id, include_deleted=False) == []
        tombstones = await store.find_all(user_id, include_deleted=True)
        assert [(c.client_id, c.deleted, c.deleted_at) for c in tombstones] == [(1, 1, 200)]
        assert [c.client_id for c in await store.find_updated_since(user_id, 150)] == [1]

        # A stale undelete loses; a newer one revives the record.
        stale = await reconciler.upsert(
            user_id, "device-1", {"client_id": 1, "name": "Work", "updated_at": 150}
        )
        assert stale.outcome == "rejected_conflict"
        revived = await reconciler.upsert(
            user_id, "device-1", {"client_id": 1, "name": "Work", "deleted": 0, "updated_at": 300}
        )
        assert revived.outcome == "accepted_update"
        active = await store.find_all(user_id, include_deleted=False)
        assert [(c.client_id, c.deleted, c.deleted_at) for c in active] == [(1, 0, None)]
        await session.commit()


@pytest.mark.anyio
async def test_same_client_id_on_two_devices_are_distinct_records(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "reconcile_devices.db")

    async with session_scope() as session:
        reconciler = TaskReconciler(RecordStore(session, Task))
        a = await reconciler.upsert(
            user_id, "phone", {"client_id": 1, "title": "from phone", "updated_at": 1000}
        )
        b = await reconciler.upsert(
            user_id, "tablet", {"client_id": 1, "title": "from tablet", "updated_at": 10}
        )
        assert a.outcome == "accepted_new"
        assert b.outcome == "accepted_new"
        await session.commit()

    assert sorted(await _task_titles(user_id)) == ["from phone", "from tablet"]
