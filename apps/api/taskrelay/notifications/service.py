from __future__ import annotations

import asyncio
import re
import smtplib
from email.message import EmailMessage
from typing import Any, Protocol

import httpx

from taskrelay.config import Settings

PUSH_TOKEN_RE = re.compile(r"^Expo(nent)?PushToken\[[^\]]+\]$")


class EmailTransport(Protocol):
  async def send(self, *, from_addr: str, to_addr: str, subject: str, content: str) -> dict[str, Any]: ...


class PushTransport(Protocol):
  async def send(self, messages: list[dict[str, Any]]) -> dict[str, Any]: ...


class SmtpEmailTransport:
  def __init__(
    self,
    *,
    host: str,
    port: int = 587,
    username: str | None = None,
    password: str | None = None,
    starttls: bool = True,
    timeout: float = 15.0,
  ) -> None:
    self.host = host
    self.port = port
    self.username = username or ""
    self.password = password or ""
    self.starttls = starttls
    self.timeout = timeout

  async def send(self, *, from_addr: str, to_addr: str, subject: str, content: str) -> dict[str, Any]:
    if not from_addr or not to_addr:
      raise ValueError("SMTP message missing from/to")

    def _send_sync() -> None:
      m = EmailMessage()
      m["Subject"] = subject
      m["From"] = from_addr
      m["To"] = to_addr
      m.set_content(content)
      with smtplib.SMTP(host=self.host, port=self.port, timeout=self.timeout) as s:
        s.ehlo()
        if self.starttls:
          s.starttls()
          s.ehlo()
        if self.username and self.password:
          s.login(self.username, self.password)
        s.send_message(m)

    await asyncio.to_thread(_send_sync)
    return {"provider": "smtp", "status": "sent", "detail": {"to": to_addr, "host": self.host, "port": self.port}}


class ExpoPushTransport:
  def __init__(self, *, url: str, timeout: float = 15.0) -> None:
    self.url = url
    self.timeout = timeout

  async def send(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
    if not messages:
      return {"provider": "expo", "status": "skipped", "detail": {}}
    async with httpx.AsyncClient(timeout=self.timeout) as client:
      r = await client.post(
        self.url,
        json=messages,
        headers={"Accept": "application/json", "Content-Type": "application/json"},
      )
      r.raise_for_status()
      data = r.json()
    return {"provider": "expo", "status": "sent", "detail": data}


def is_push_token(token: str | None) -> bool:
  return bool(token) and bool(PUSH_TOKEN_RE.match(str(token).strip()))


def push_messages_for(tokens: list[str], *, title: str, body: str, data: dict[str, Any]) -> list[dict[str, Any]]:
  return [{"to": t, "sound": "default", "title": title, "body": body, "data": data} for t in tokens]


def email_transport_from_settings(cfg: Settings) -> SmtpEmailTransport | None:
  if not cfg.smtp_configured():
    return None
  return SmtpEmailTransport(
    host=str(cfg.smtp_host).strip(),
    port=int(cfg.smtp_port or 587),
    username=cfg.smtp_user,
    password=cfg.smtp_password,
    starttls=bool(cfg.smtp_starttls),
    timeout=float(cfg.http_timeout_seconds),
  )


def push_transport_from_settings(cfg: Settings) -> ExpoPushTransport:
  return ExpoPushTransport(url=cfg.push_gateway_url, timeout=float(cfg.http_timeout_seconds))
