from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://postgres:postgres@db:5432/safety_admin"
  api_docs_enabled: bool = True

  # Supabase-issued access tokens (HS256) identify the calling admin.
  supabase_jwt_secret: str = "dev-supabase-jwt-secret-change-me-0123456789"
  supabase_jwt_audience: str = "authenticated"

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

  google_service_account_json: str | None = None
  google_service_account_json_base64: str | None = None
  firebase_project_id: str | None = None
  fcm_base_url: str = "https://fcm.googleapis.com"
  fcm_scope: str = "https://www.googleapis.com/auth/firebase.messaging"
  android_channel_id: str = "push_default_v2"

  push_batch_size: int = 100
  push_max_attempts: int = 3
  push_backoff_base_ms: int = 200
  push_backoff_jitter_ms: int = 100
  push_http_timeout_seconds: float = 15.0
  push_token_refresh_margin_seconds: int = 300

  push_scheduler_enabled: bool = True
  push_scheduler_interval_seconds: int = 60
  push_scheduler_batch_limit: int = 10

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
