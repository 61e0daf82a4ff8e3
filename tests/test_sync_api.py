from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from sqlmodel import select

from todo_sync.config import settings
from todo_sync.db import init_db, reset_engine_cache, session_scope
from todo_sync.main import app
from todo_sync.models import Task, User, UserDevice


def _make_async_client(*, raise_app_exceptions: bool = True) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


async def _setup(tmp_path: Path, name: str, token: str) -> int:
    settings.database_url = f"sqlite:///{tmp_path / name}"
    reset_engine_cache()
    await init_db()

    async with session_scope() as session:
        user = User(username=f"u_{token}", api_token=token, is_active=True)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        user_db_id = user.id
        assert user_db_id is not None
    return int(user_db_id)


@pytest.mark.anyio
async def test_upload_download_status_flow(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "api_flow.db", "tok-flow")
    headers = {"Authorization": "Bearer tok-flow"}

    async with _make_async_client() as client:
        r = await client.post(
            "/api/v1/sync/upload",
            json={
                "device_id": "phone",
                "sync_timestamp": 1700000000,
                "data": {
                    "categories": [{"client_id": 1, "name": "Work", "updated_at": 100}],
                    "tasks": [
                        {
                            "client_id": 1,
                            "title": "Write report",
                            "is_completed": False,
                            "category_id": 1,
                            "updated_at": 100,
                        }
                    ],
                },
            },
            headers=headers,
        )
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["success"] is True
        assert body["message"] == "Data uploaded successfully"
        assert body["data"]["uploaded"] == {"categories": 1, "tasks": 1}
        assert body["data"]["conflicts"] == {"categories": 0, "tasks": 0}
        assert isinstance(body["data"]["sync_timestamp"], int)

        # Stale edit from the same device is a conflict, not an error.
        r = await client.post(
            "/api/v1/sync/upload",
            json={
                "device_id": "phone",
                "data": {"tasks": [{"client_id": 1, "title": "old", "updated_at": 50}]},
            },
            headers=headers,
        )
        assert r.status_code == 200, r.text
        assert r.json()["data"]["conflicts"] == {"tasks": 1}

        r = await client.get(
            "/api/v1/sync/status", params={"device_id": "tablet"}, headers=headers
        )
        assert r.status_code == 200, r.text
        status_data = r.json()["data"]
        assert status_data["pending_changes"] is True
        assert status_data["last_sync"] == {}

        r = await client.get(
            "/api/v1/sync/download", params={"device_id": "tablet"}, headers=headers
        )
        assert r.status_code == 200, r.text
        data = r.json()["data"]
        assert [t["title"] for t in data["tasks"]] == ["Write report"]
        assert [c["name"] for c in data["categories"]] == ["Work"]
        assert data["tasks"][0]["device_id"] == "phone"
        assert data["tasks"][0]["user_id"] == user_id
        assert isinstance(data["sync_timestamp"], int)

        r = await client.get(
            "/api/v1/sync/download",
            params={"device_id": "tablet", "since": 100},
            headers=headers,
        )
        assert r.status_code == 200, r.text
        assert r.json()["data"]["tasks"] == []

        r = await client.get("/api/v1/sync/status", params={"device_id": "phone"}, headers=headers)
        assert r.status_code == 200, r.text
        status_data = r.json()["data"]
        assert status_data["pending_changes"] is False
        assert status_data["last_sync"]["tasks"]["sync_count"] == 2
        assert status_data["last_sync"]["categories"]["status"] == "success"
        assert isinstance(status_data["server_timestamp"], int)

    async with session_scope() as session:
        devices = (
            await session.exec(select(UserDevice).where(UserDevice.user_id == user_id))
        ).all()
        assert sorted(d.device_id for d in devices) == ["phone", "tablet"]
        assert all(d.last_seen >= d.first_seen for d in devices)


@pytest.mark.anyio
async def test_sync_requires_bearer_token(tmp_path: Path) -> None:
    _ = await _setup(tmp_path, "api_auth.db", "tok-auth")

    async with _make_async_client() as client:
        r = await client.get("/api/v1/sync/status", params={"device_id": "d"})
        assert r.status_code == 401
        assert r.json()["error"] == "unauthorized"
        assert r.headers.get("x-request-id")

        r = await client.get(
            "/api/v1/sync/status",
            params={"device_id": "d"},
            headers={"Authorization": "Bearer wrong"},
        )
        assert r.status_code == 401


@pytest.mark.anyio
async def test_disabled_user_is_forbidden(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "api_disabled.db", "tok-disabled")
    async with session_scope() as session:
        user = await session.get(User, user_id)
        assert user is not None
        user.is_active = False
        session.add(user)
        await session.commit()

    async with _make_async_client() as client:
        r = await client.get(
            "/api/v1/sync/download",
            params={"device_id": "d"},
            headers={"Authorization": "Bearer tok-disabled"},
        )
        assert r.status_code == 403


@pytest.mark.anyio
async def test_upload_rejects_malformed_requests(tmp_path: Path) -> None:
    _ = await _setup(tmp_path, "api_validation.db", "tok-val")
    headers = {"Authorization": "Bearer tok-val"}

    async with _make_async_client() as client:
        r = await client.post("/api/v1/sync/upload", json={"device_id": "d"}, headers=headers)
        assert r.status_code == 422
        body = r.json()
        assert body["error"] == "validation_error"
        assert body["request_id"]

        r = await client.post("/api/v1/sync/upload", json={"data": {}}, headers=headers)
        assert r.status_code == 422

        r = await client.post(
            "/api/v1/sync/upload",
            json={"device_id": "d", "data": {"tasks": [{"title": "no client id"}]}},
            headers=headers,
        )
        assert r.status_code == 422

        r = await client.get("/api/v1/sync/download", headers=headers)
        assert r.status_code == 422


@pytest.mark.anyio
async def test_storage_fault_returns_500_without_partial_writes(tmp_path: Path) -> None:
    user_id = await _setup(tmp_path, "api_fault.db", "tok-fault")

    async with _make_async_client(raise_app_exceptions=False) as client:
        r = await client.post(
            "/api/v1/sync/upload",
            json={
                "device_id": "phone",
                "data": {
                    "tasks": [
                        {"client_id": 1, "title": "ok", "updated_at": 100},
                        {"client_id": 2, "updated_at": 100},
                    ]
                },
            },
            headers={"Authorization": "Bearer tok-fault"},
        )
        assert 500 <= r.status_code < 600

        r = await client.get(
            "/api/v1/sync/status",
            params={"device_id": "phone"},
            headers={"Authorization": "Bearer tok-fault"},
        )
        assert r.status_code == 200, r.text
        tasks_status = r.json()["data"]["last_sync"]["tasks"]
        assert tasks_status["status"] == "failed"
        assert tasks_status["error_count"] == 1

    async with session_scope() as session:
        rows = (await session.exec(select(Task).where(Task.user_id == user_id))).all()
        assert rows == []


@pytest.mark.anyio
async def test_health_and_unknown_api_path(tmp_path: Path) -> None:
    _ = await _setup(tmp_path, "api_health.db", "tok-health")

    async with _make_async_client() as client:
        r = await client.get("/health", headers={"X-Request-Id": "req-123"})
        assert r.status_code == 200
        body = r.json()
        assert body["ok"] is True
        assert body["database"] == "connected"
        assert r.headers["x-request-id"] == "req-123"

        r = await client.get("/api/v1/nope")
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"


@pytest.mark.anyio
async def test_status_is_first_call_of_a_fresh_device(tmp_path: Path) -> None:
    _ = await _setup(tmp_path, "api_status_first.db", "tok-status")

    async with _make_async_client() as client:
        r = await client.get(
            "/api/v1/sync/status",
            params={"device_id": "phone"},
            headers={"Authorization": "Bearer tok-status"},
        )
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["success"] is True
        assert body["data"]["last_sync"] == {}
        assert body["data"]["pending_changes"] is False
