from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError


def project_root() -> Path:
    return Path(__file__).resolve().parents[1]


class Settings(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    database_url: str = Field(default="sqlite:///daily_rollup.db", alias="DATABASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    pipeline_interval_seconds: int = Field(default=300, ge=1, alias="PIPELINE_INTERVAL_SECONDS")
    stage_timeout_seconds: float = Field(default=120.0, gt=0, alias="STAGE_TIMEOUT_SECONDS")
    stale_run_minutes: int = Field(default=10, ge=1, alias="STALE_RUN_MINUTES")
    malformed_row_policy: Literal["skip", "fail"] = Field(
        default="skip", alias="MALFORMED_ROW_POLICY"
    )

    scheduler_max_instances: int = Field(default=1, ge=1, alias="SCHEDULER_MAX_INSTANCES")
    scheduler_coalesce: bool = Field(default=True, alias="SCHEDULER_COALESCE")
    scheduler_misfire_grace_seconds: int = Field(
        default=30, alias="SCHEDULER_MISFIRE_GRACE_SECONDS"
    )

    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=9000, alias="API_PORT")


def load_settings(env_path: Path | None = None) -> Settings:
    env_file = env_path or (project_root() / ".env")
    if env_file.exists():
        load_dotenv(env_file, override=False)
    try:
        return Settings.model_validate(dict(os.environ))
    except ValidationError as exc:
        raise RuntimeError(
            "Invalid environment variables. Copy `.env.example` to `.env` and edit it."
        ) from exc
