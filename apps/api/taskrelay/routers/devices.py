from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskrelay.deps import get_current_user, get_db
from taskrelay.devices.service import list_device_tokens, register_device_token
from taskrelay.models import Profile, UserDeviceToken
from taskrelay.schemas import DeviceTokenIn, DeviceTokenOut

router = APIRouter(prefix="/me/device-tokens", tags=["devices"])


def _device_out(d: UserDeviceToken) -> DeviceTokenOut:
  return DeviceTokenOut(
    token=d.token,
    platform=d.platform,
    deviceName=d.device_name,
    lastSeenAt=d.last_seen_at,
    createdAt=d.created_at,
  )


@router.put("", response_model=DeviceTokenOut)
async def put_device_token(payload: DeviceTokenIn, user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> DeviceTokenOut:
  try:
    d = await register_device_token(
      db,
      user_id=user.id,
      token=payload.token,
      platform=payload.platform,
      device_name=payload.deviceName,
    )
  except ValueError as e:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
  return _device_out(d)


@router.get("", response_model=list[DeviceTokenOut])
async def get_device_tokens(user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[DeviceTokenOut]:
  return [_device_out(d) for d in await list_device_tokens(db, user.id)]
