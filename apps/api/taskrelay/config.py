from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  # No default: the service cannot do anything without its store.
  database_url: str
  app_version: str = "v2026-10-19"
  build_sha: str = "dev"

  # Identity provider (bearer tokens are verified against {auth_url}/user).
  auth_url: str | None = None
  service_key: str | None = None

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

  log_level: str = "info"
  log_format: str = "json"  # json | console

  smtp_host: str | None = None
  smtp_port: int = 587
  smtp_user: str | None = None
  smtp_password: str | None = None
  smtp_from: str | None = None
  smtp_starttls: bool = True

  portal_base_url: str | None = None
  push_gateway_url: str = "https://exp.host/--/api/v2/push/send"
  http_timeout_seconds: float = 15.0

  notification_batch_size: int = 50
  notification_max_attempts: int = 5
  reminder_due_window_hours: int = 24

  worker_secret: str | None = None
  background_workers_enabled: bool = False
  reminder_interval_seconds: int = 600
  dispatch_interval_seconds: int = 30

  max_attachment_bytes: int = 20 * 1024 * 1024
  allowed_attachment_types: str = (
    "application/pdf,application/msword,"
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
    "application/vnd.ms-excel,"
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet,"
    "application/zip,text/plain"
  )
  allowed_attachment_prefixes: str = "image/"

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def allowed_attachment_type_set(self) -> set[str]:
    return {t.strip() for t in self.allowed_attachment_types.split(",") if t.strip()}

  def allowed_attachment_prefix_list(self) -> list[str]:
    return [p.strip() for p in self.allowed_attachment_prefixes.split(",") if p.strip()]

  def smtp_configured(self) -> bool:
    return bool((self.smtp_host or "").strip() and (self.smtp_from or "").strip())


settings = Settings()
