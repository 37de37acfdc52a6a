from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from taskrelay.models import UserDeviceToken

PLATFORMS = ("ios", "android", "web", "unknown")


def _insert_for(db: AsyncSession):
  # ON CONFLICT upserts are dialect specific; both dialects share the API.
  if db.get_bind().dialect.name == "sqlite":
    return sqlite.insert
  return postgresql.insert


async def register_device_token(
  db: AsyncSession,
  *,
  user_id: str,
  token: str,
  platform: str | None = None,
  device_name: str | None = None,
  now: datetime | None = None,
) -> UserDeviceToken:
  now = now or datetime.now(timezone.utc)
  token = (token or "").strip()
  if not token:
    raise ValueError("token is required")
  plat = str(platform or "unknown").strip().lower()
  if plat not in PLATFORMS:
    plat = "unknown"
  name = (device_name or "").strip() or None

  insert = _insert_for(db)
  stmt = (
    insert(UserDeviceToken)
    .values(
      user_id=user_id,
      token=token,
      platform=plat,
      device_name=name,
      last_seen_at=now,
      created_at=now,
    )
    .on_conflict_do_update(
      index_elements=["user_id", "token"],
      set_={"platform": plat, "device_name": name, "last_seen_at": now},
    )
  )
  await db.execute(stmt)
  await db.commit()

  res = await db.execute(
    select(UserDeviceToken)
    .where(UserDeviceToken.user_id == user_id, UserDeviceToken.token == token)
    .execution_options(populate_existing=True)
  )
  return res.scalar_one()


async def list_device_tokens(db: AsyncSession, user_id: str) -> list[UserDeviceToken]:
  res = await db.execute(
    select(UserDeviceToken)
    .where(UserDeviceToken.user_id == user_id)
    .order_by(UserDeviceToken.last_seen_at.desc())
  )
  return list(res.scalars().all())
