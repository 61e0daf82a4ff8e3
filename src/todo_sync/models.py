# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from todo_sync.sync_utils import now_ts


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, min_length=1, max_length=64)
    # Issued by the auth service; sync only verifies it.
    api_token: Optional[str] = Field(default=None, index=True, unique=True, max_length=255)

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class UserDevice(SQLModel, table=True):
    __tablename__ = "user_devices"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_user_devices_user_id_device_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="users.id")

    device_id: str = Field(index=True, min_length=1, max_length=128)
    device_name: Optional[str] = Field(default=None, max_length=200)

    first_seen: datetime = Field(default_factory=utc_now, index=True)
    last_seen: datetime = Field(default_factory=utc_now, index=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)


class SyncableRow(SQLModel):
    user_id: int = Field(index=True, foreign_key="users.id")
    # Device that wrote the current version; together with client_id it forms the identity.
    device_id: str = Field(index=True, min_length=1, max_length=128)
    client_id: int = Field(index=True)

    # Client clock (unix seconds). LWW authority; stored verbatim.
    updated_at: int = Field(default=0, index=True)
    deleted: int = Field(default=0, index=True)
    deleted_at: Optional[int] = Field(default=None)

    # Server bookkeeping (unix seconds), never compared for LWW.
    created_at: int = Field(default_factory=now_ts)
    server_updated_at: int = Field(default_factory=now_ts, index=True)
    revision: int = Field(default=1)


class Task(SyncableRow, table=True):
    __tablename__ = "tasks"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("user_id", "device_id", "client_id", name="uq_tasks_user_device_client"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=500)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    due_date: Optional[int] = Field(default=None)
    is_completed: int = Field(default=0, index=True)
    completed_at: Optional[int] = Field(default=None)
    # client_id of a category on the same device.
    category_id: Optional[int] = Field(default=None)
    priority: int = Field(default=1)


class Category(SyncableRow, table=True):
    __tablename__ = "categories"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint(
            "user_id", "device_id", "client_id", name="uq_categories_user_device_client"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=200)
    color: Optional[str] = Field(default=None, max_length=32)


class SyncMetadata(SQLModel, table=True):
    __tablename__ = "sync_metadata"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "device_id",
            "entity_type",
            name="uq_sync_metadata_user_device_entity",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="users.id")
    device_id: str = Field(index=True, min_length=1, max_length=128)
    # tasks / categories / download / upload
    entity_type: str = Field(index=True, max_length=32)

    last_sync_at: int = Field(default_factory=now_ts, index=True)
    last_sync_status: str = Field(default="success", max_length=20)
    sync_count: int = Field(default=0)
    error_count: int = Field(default=0)
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: int = Field(default_factory=now_ts)
    updated_at: int = Field(default_factory=now_ts)
