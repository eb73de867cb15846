"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """PrismFlow configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/prismflow.db"))

    # Outbound HTTP
    proxy_url: str = Field(default="")
    request_timeout_seconds: float = Field(default=120.0)

    # Agent runtime
    max_agent_rounds: int = Field(default=5)
    default_agent_id: str = Field(default="default_summarizer")

    # Skills (comma-separated, earlier entries win on id clashes)
    skill_paths: str = Field(default="skills,.agents/skills,data/skills")

    # Scheduler
    scheduler_timezone: str = Field(default="Asia/Shanghai")

    # Batch processing
    batch_workers: int = Field(default=5)
    batch_worker_stagger_seconds: float = Field(default=0.2)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_skill_paths(self) -> list[Path]:
        """Parse SKILL_PATHS into a list of directories."""
        if not self.skill_paths.strip():
            return []
        return [Path(p.strip()) for p in self.skill_paths.split(",") if p.strip()]


settings = Settings()
