from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote


def normalize_database_url_for_async(database_url: str) -> str:
    """
    Normalize DATABASE_URL to an async driver usable at runtime.

    - SQLite: sqlite+aiosqlite://...
    - PostgreSQL: postgresql+psycopg://... (psycopg3 ships async support)
    """
    url = (database_url or "").strip()
    if not url:
        return url

    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]

    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)

    return url


def normalize_database_url_for_alembic(database_url: str) -> str:
    """
    Alembic runs migrations on a sync engine, so strip async drivers:

    - sqlite+aiosqlite:// -> sqlite://
    - postgresql:// -> postgresql+psycopg:// (force psycopg3, never psycopg2)
    """
    url = (database_url or "").strip()
    if not url:
        return url

    if url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite+aiosqlite://", "sqlite://", 1)

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]

    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)

    return url


def database_dialect(database_url: str) -> str:
    """Return "sqlite", "postgresql" or "other" for a DATABASE_URL."""
    v = (database_url or "").strip().lower()
    if v.startswith("sqlite"):
        return "sqlite"
    if v.startswith("postgresql") or v.startswith("postgres"):
        return "postgresql"
    return "other"


def extract_sqlite_db_file_path(database_url: str) -> Path | None:
    """Best-effort local file path of a SQLite DATABASE_URL.

    Handles `sqlite:///./relative.db`, `sqlite:////abs/path.db` and the
    `+aiosqlite` variants. Returns None for in-memory and non-sqlite URLs.
    """

    url = (database_url or "").strip()
    if not url:
        return None

    url = url.split("#", 1)[0].split("?", 1)[0]
    lower = url.lower()
    if not lower.startswith("sqlite") or lower.endswith(":memory:"):
        return None

    sep = url.find("://")
    if sep == -1:
        return None

    rest = url[sep + 3 :]
    if rest.startswith(":memory:") or rest.startswith("/:memory:"):
        return None

    # sqlite:////tmp/a.db -> "//tmp/a.db"; sqlite:///./a.db -> "/./a.db"
    file_path = rest[1:] if rest.startswith("/") else rest
    file_path = unquote(file_path)
    if not file_path or file_path == ":memory:":
        return None

    return Path(file_path)


def ensure_sqlite_parent_dir(database_url: str) -> None:
    path = extract_sqlite_db_file_path(database_url)
    if path is None:
        return

    parent = path.parent
    if str(parent) in {"", "."}:
        return

    parent.mkdir(parents=True, exist_ok=True)
