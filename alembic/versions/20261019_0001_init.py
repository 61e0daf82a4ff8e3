"""users, devices, syncable tasks/categories and sync metadata

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def _syncable_columns() -> list[sa.Column]:
    return [
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("device_id", sa.String(length=128), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.Integer(), nullable=False),
        sa.Column("deleted", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.Column("server_updated_at", sa.Integer(), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
    ]


def _create_syncable_indexes(table: str) -> None:
    for col in ("user_id", "device_id", "client_id", "updated_at", "deleted", "server_updated_at"):
        op.create_index(f"ix_{table}_{col}", table, [col], unique=False)


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("username", sa.String(length=64), nullable=False),
            sa.Column("api_token", sa.String(length=255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_users_username", "users", ["username"], unique=True)
        op.create_index("ix_users_api_token", "users", ["api_token"], unique=True)
        op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
        op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    if not _table_exists("user_devices"):
        op.create_table(
            "user_devices",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("device_id", sa.String(length=128), nullable=False),
            sa.Column("device_name", sa.String(length=200), nullable=True),
            sa.Column("first_seen", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint(
                "user_id",
                "device_id",
                name="uq_user_devices_user_id_device_id",
            ),
        )
        op.create_index("ix_user_devices_user_id", "user_devices", ["user_id"], unique=False)
        op.create_index("ix_user_devices_device_id", "user_devices", ["device_id"], unique=False)
        op.create_index("ix_user_devices_last_seen", "user_devices", ["last_seen"], unique=False)

    if not _table_exists("categories"):
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            *_syncable_columns(),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("color", sa.String(length=32), nullable=True),
            sa.UniqueConstraint(
                "user_id", "device_id", "client_id", name="uq_categories_user_device_client"
            ),
        )
        _create_syncable_indexes("categories")

    if not _table_exists("tasks"):
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            *_syncable_columns(),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("due_date", sa.Integer(), nullable=True),
            sa.Column("is_completed", sa.Integer(), nullable=False),
            sa.Column("completed_at", sa.Integer(), nullable=True),
            sa.Column("category_id", sa.Integer(), nullable=True),
            sa.Column("priority", sa.Integer(), nullable=False),
            sa.UniqueConstraint(
                "user_id", "device_id", "client_id", name="uq_tasks_user_device_client"
            ),
        )
        _create_syncable_indexes("tasks")
        op.create_index("ix_tasks_is_completed", "tasks", ["is_completed"], unique=False)

    if not _table_exists("sync_metadata"):
        op.create_table(
            "sync_metadata",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("device_id", sa.String(length=128), nullable=False),
            sa.Column("entity_type", sa.String(length=32), nullable=False),
            sa.Column("last_sync_at", sa.Integer(), nullable=False),
            sa.Column("last_sync_status", sa.String(length=20), nullable=False),
            sa.Column("sync_count", sa.Integer(), nullable=False),
            sa.Column("error_count", sa.Integer(), nullable=False),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.Integer(), nullable=False),
            sa.Column("updated_at", sa.Integer(), nullable=False),
            sa.UniqueConstraint(
                "user_id",
                "device_id",
                "entity_type",
                name="uq_sync_metadata_user_device_entity",
            ),
        )
        op.create_index("ix_sync_metadata_user_id", "sync_metadata", ["user_id"], unique=False)
        op.create_index("ix_sync_metadata_device_id", "sync_metadata", ["device_id"], unique=False)
        op.create_index(
            "ix_sync_metadata_entity_type", "sync_metadata", ["entity_type"], unique=False
        )
        op.create_index(
            "ix_sync_metadata_last_sync_at", "sync_metadata", ["last_sync_at"], unique=False
        )


def downgrade() -> None:
    for table in ("sync_metadata", "tasks", "categories", "user_devices", "users"):
        if _table_exists(table):
            op.drop_table(table)
