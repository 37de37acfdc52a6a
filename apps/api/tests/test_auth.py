from __future__ import annotations

import pytest
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from taskrelay import deps
from taskrelay.config import settings
from taskrelay.db import SessionLocal
from taskrelay.main import app
from taskrelay.models import Profile


@pytest.fixture
async def raw_client() -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


@pytest.mark.anyio
async def test_bearer_token_maps_to_new_profile(raw_client: AsyncClient, monkeypatch) -> None:
  seen: list[str] = []

  async def _identity(token: str) -> dict:
    seen.append(token)
    return {"id": "11111111-1111-1111-1111-111111111111", "email": "new@example.com", "user_metadata": {"full_name": "Nia New"}}

  monkeypatch.setattr(deps, "fetch_identity", _identity)
  res = await raw_client.get("/me/assignments", headers={"Authorization": "Bearer abc.def"})
  assert res.status_code == 200, res.text
  assert res.json() == []
  assert seen == ["abc.def"]

  async with SessionLocal() as db:
    p = await db.get(Profile, "11111111-1111-1111-1111-111111111111")
  assert p.email == "new@example.com"
  assert p.full_name == "Nia New"


@pytest.mark.anyio
async def test_missing_token_is_401(raw_client: AsyncClient) -> None:
  res = await raw_client.get("/me/assignments")
  assert res.status_code == 401


@pytest.mark.anyio
async def test_identity_provider_not_configured(monkeypatch) -> None:
  monkeypatch.setattr(settings, "auth_url", None)
  with pytest.raises(HTTPException) as exc:
    await deps.fetch_identity("token")
  assert exc.value.status_code == 503
