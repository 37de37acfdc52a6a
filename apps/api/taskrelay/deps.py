from __future__ import annotations

import secrets

import httpx
import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskrelay.config import settings
from taskrelay.db import SessionLocal
from taskrelay.models import Group, GroupMember, OrganizationMember, Profile

log = structlog.get_logger()

ORG_ROLE_ORDER = {"member": 0, "admin": 1, "owner": 2}
GROUP_ROLE_ORDER = {"member": 0, "admin": 1}


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


def _bearer_token(request: Request) -> str | None:
  auth = request.headers.get("authorization") or ""
  if not auth.lower().startswith("bearer "):
    return None
  token = auth.split(" ", 1)[1].strip()
  return token or None


async def fetch_identity(token: str) -> dict:
  """Resolve a bearer token with the identity provider. Raises HTTPException."""
  base = (settings.auth_url or "").strip().rstrip("/")
  if not base or not settings.service_key:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Authentication not configured")
  try:
    async with httpx.AsyncClient(timeout=float(settings.http_timeout_seconds)) as client:
      r = await client.get(
        f"{base}/user",
        headers={"Authorization": f"Bearer {token}", "apikey": settings.service_key},
      )
  except httpx.HTTPError as e:
    log.warning("auth.provider_unreachable", error=str(e))
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Authentication unavailable")
  if r.status_code in (401, 403):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  if r.status_code >= 400:
    log.warning("auth.provider_error", status_code=r.status_code)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Authentication unavailable")
  data = r.json()
  if not isinstance(data, dict) or not data.get("id"):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  return data


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> Profile:
  token = _bearer_token(request)
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  ident = await fetch_identity(token)

  user_id = str(ident["id"])
  res = await db.execute(select(Profile).where(Profile.id == user_id))
  p = res.scalar_one_or_none()
  if p:
    return p

  meta = ident.get("user_metadata") if isinstance(ident.get("user_metadata"), dict) else {}
  p = Profile(id=user_id, email=ident.get("email"), full_name=meta.get("full_name") or meta.get("name"))
  db.add(p)
  await db.commit()
  log.info("auth.profile_created", user_id=user_id)
  return p


async def require_worker_secret(request: Request) -> None:
  """Bearer check for the worker endpoints; open when no secret is configured."""
  expected = (settings.worker_secret or "").strip()
  if not expected:
    return
  token = _bearer_token(request) or ""
  if not secrets.compare_digest(token, expected):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid worker credentials")


async def require_org_role(organization_id: str, min_role: str, user: Profile, db: AsyncSession) -> str:
  # role order: member < admin < owner
  res = await db.execute(
    select(OrganizationMember).where(
      OrganizationMember.organization_id == organization_id,
      OrganizationMember.user_id == user.id,
    )
  )
  m = res.scalar_one_or_none()
  if not m:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a member of this organization")
  if ORG_ROLE_ORDER.get(m.role, -1) < ORG_ROLE_ORDER.get(min_role, 0):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
  return m.role


async def require_group_role(group_id: str, min_role: str, user: Profile, db: AsyncSession) -> Group:
  """
  Check the user's role in a group and return the group.

  Organization owners and admins count as group admins.
  """
  g = await db.get(Group, group_id)
  if not g:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found")

  ores = await db.execute(
    select(OrganizationMember.role).where(
      OrganizationMember.organization_id == g.organization_id,
      OrganizationMember.user_id == user.id,
    )
  )
  org_role = ores.scalar_one_or_none()
  if org_role in ("owner", "admin"):
    return g

  gres = await db.execute(select(GroupMember.role).where(GroupMember.group_id == group_id, GroupMember.user_id == user.id))
  group_role = gres.scalar_one_or_none()
  if group_role is None:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No group access")
  if GROUP_ROLE_ORDER.get(group_role, -1) < GROUP_ROLE_ORDER.get(min_role, 0):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
  return g
