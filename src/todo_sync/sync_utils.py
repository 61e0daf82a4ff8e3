from __future__ import annotations

import time


def now_ts() -> int:
    """Current server time as Unix seconds."""
    return int(time.time())


def to_flag(value: object | None) -> int:
    # Clients send true/false, 0/1 or "0"/"1"; storage keeps 0/1.
    if isinstance(value, str):
        return 0 if value.strip().lower() in {"", "0", "false", "no"} else 1
    return 1 if value else 0


def parse_optional_ts(field: str, value: object | None) -> int | None:
    """Parse a Unix-second timestamp; falsy values mean "not set".

    Raises ValueError for values that cannot be stored as an integer timestamp.
    """
    if value is None or value == "" or value is False:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value or None
    if isinstance(value, float):
        return int(value) or None
    if isinstance(value, str):
        try:
            return int(value.strip()) or None
        except ValueError:
            raise ValueError(f"{field} must be a unix timestamp, got {value!r}") from None
    raise ValueError(f"{field} must be a unix timestamp, got {type(value).__name__}")
