"""Resolution Workflow — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class WorkflowSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── Record store ───────────────────────────────────────────
    database_url: str = ""
    postgres_user: str = "resolution_workflow"
    postgres_password: str = "change-me-in-production"
    postgres_db: str = "resolution_workflow"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    @property
    def database_url_sync(self) -> str:
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def effective_database_url(self) -> str:
        """Explicit ``database_url`` wins over the assembled Postgres URL."""
        return self.database_url or self.database_url_sync

    # ── Report content rules ───────────────────────────────────
    min_progress_detail_length: int = 10

    # ── Mail relay ─────────────────────────────────────────────
    mail_relay_url: str = ""
    mail_relay_token: str = ""
    mail_from: str = "no-reply@resolution-workflow.local"
    mail_timeout_seconds: float = 10.0

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = WorkflowSettings()
