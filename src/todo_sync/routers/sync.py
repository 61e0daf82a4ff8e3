from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_sync.db import get_session
from todo_sync.deps import get_current_user
from todo_sync.device_tracking import touch_device
from todo_sync.models import User
from todo_sync.schemas_common import success
from todo_sync.schemas_sync import SyncStatusResult, SyncUploadRequest, SyncUploadResult
from todo_sync.services.sync_service import SyncOrchestrator
from todo_sync.sync_utils import now_ts

router = APIRouter(prefix="/sync", tags=["sync"])


def _user_id(user: User) -> int:
    if user.id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user id missing"
        )
    return int(user.id)


@router.post("/upload")
async def upload(
    req: SyncUploadRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    user_id = _user_id(user)
    await touch_device(session, user_id, req.device_id)

    stats = await SyncOrchestrator(session).upload(
        user_id=user_id, device_id=req.device_id, data=req.data.to_batch()
    )
    result = SyncUploadResult(
        uploaded=stats["uploaded"], conflicts=stats["conflicts"], sync_timestamp=now_ts()
    )
    return success(result.model_dump(), "Data uploaded successfully")


@router.get("/download")
async def download(
    device_id: str = Query(min_length=1, max_length=128),
    since: int = Query(default=0),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    user_id = _user_id(user)
    await touch_device(session, user_id, device_id)

    data = await SyncOrchestrator(session).download(
        user_id=user_id, device_id=device_id, since=since
    )
    return success({**data, "sync_timestamp": now_ts()})


@router.get("/status")
async def sync_status(
    device_id: str = Query(min_length=1, max_length=128),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    result = await SyncOrchestrator(session).status(user_id=_user_id(user), device_id=device_id)
    payload = SyncStatusResult.model_validate({**result, "server_timestamp": now_ts()})
    return success(payload.model_dump())
