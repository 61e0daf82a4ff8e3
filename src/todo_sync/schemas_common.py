from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Error body shared by every endpoint."""

    error: str
    message: str
    request_id: str | None = None
    details: object | None = None


class HealthResponse(BaseModel):
    ok: bool = True
    database: str = "connected"
    timestamp: int


def success(data: Any = None, message: str = "Success") -> dict[str, Any]:
    # Envelope expected by the mobile clients.
    return {"success": True, "data": data, "message": message}
