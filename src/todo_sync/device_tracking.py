from __future__ import annotations

import logging
from datetime import datetime

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_sync.models import UserDevice, utc_now

logger = logging.getLogger(__name__)


async def touch_device(
    session: AsyncSession, user_id: int, device_id: str, device_name: str | None = None
) -> None:
    """Create the (user, device) association or bump its last_seen.

    Best-effort: commits on its own and never fails the caller.
    """
    if not device_id:
        return

    now: datetime = utc_now()
    try:
        device = (
            await session.exec(
                select(UserDevice)
                .where(UserDevice.user_id == user_id)
                .where(UserDevice.device_id == device_id)
            )
        ).first()

        if not device:
            device = UserDevice(
                user_id=user_id,
                device_id=device_id,
                device_name=device_name,
                first_seen=now,
                last_seen=now,
                created_at=now,
                updated_at=now,
            )
        else:
            # Don't overwrite with empty values.
            if device_name:
                device.device_name = device_name
            device.last_seen = now
            device.updated_at = now
        session.add(device)
        await session.commit()
    except Exception:
        await session.rollback()
        logger.warning(
            "touch_device failed user_id=%s device_id=%s", user_id, device_id, exc_info=True
        )

