from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tradeplan.llm_client.base import LLMCallConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env.

    Stage timeouts are split across the httpx connect, write, pool and read
    phases so their sum equals the stage budget. The read phase is still a
    per-chunk limit, so a trickling reply can outlast it.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TRADEPLAN_",
        populate_by_name=True,
        extra="ignore",
    )

    environment: str = "local"
    log_level: str = "INFO"

    job_store_backend: Literal["sqlite", "memory"] = "sqlite"
    sqlite_path: Path = Path("data/tradeplan.sqlite3")
    job_stale_after_seconds: float = Field(default=120.0, gt=0)

    prompts_root: Path | None = None
    prompt_name: str = "plan_generation"
    prompt_version: str = "v001"
    pricing_config_path: Path | None = None

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TRADEPLAN_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    openai_base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TRADEPLAN_OPENAI_BASE_URL", "OPENAI_BASE_URL"),
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices("TRADEPLAN_OPENAI_MODEL", "OPENAI_MODEL"),
    )
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    top_p: float = Field(default=0.1, gt=0.0, le=1.0)
    max_output_tokens: int = Field(default=900, ge=1)

    stage_a_timeout_seconds: float = Field(default=20.0, gt=0)
    stage_b_timeout_seconds: float = Field(default=20.0, gt=0)
    host_execution_ceiling_seconds: float = Field(default=900.0, gt=0)
    preview_chars: int = Field(default=300, ge=1)

    mongo_uri: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TRADEPLAN_MONGO_URI", "MONGO_URI"),
    )
    mongo_db: str = Field(
        default="trade_agent",
        validation_alias=AliasChoices("TRADEPLAN_MONGO_DB", "MONGO_DB"),
    )
    mongo_collection: str = "trade_state"
    state_doc_id: str = "default"
    trade_admin_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TRADEPLAN_TRADE_ADMIN_KEY", "TRADE_ADMIN_KEY"),
    )

    api_base_url: str = "http://127.0.0.1:8000"
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    poll_max_attempts: int = Field(default=60, ge=1)
    cors_allow_origins: str = "*"

    @model_validator(mode="after")
    def _check_stage_budgets(self) -> "Settings":
        total = self.stage_a_timeout_seconds + self.stage_b_timeout_seconds
        if total >= self.host_execution_ceiling_seconds:
            raise ValueError(
                "stage_a_timeout_seconds + stage_b_timeout_seconds must stay below "
                f"host_execution_ceiling_seconds ({total} >= "
                f"{self.host_execution_ceiling_seconds})"
            )
        return self

    @property
    def package_root(self) -> Path:
        return Path(__file__).resolve().parents[1]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parents[2]

    @property
    def resolved_sqlite_path(self) -> Path:
        return self._resolve_path(self.sqlite_path)

    @property
    def resolved_prompts_root(self) -> Path:
        if self.prompts_root is None:
            return self.package_root / "prompts"
        return self._resolve_path(self.prompts_root)

    @property
    def resolved_pricing_config_path(self) -> Path:
        if self.pricing_config_path is None:
            return self.package_root / "config" / "pricing.yaml"
        return self._resolve_path(self.pricing_config_path)

    @property
    def cors_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.cors_allow_origins.split(",")
            if origin.strip()
        ]

    def llm_call_config(self) -> LLMCallConfig:
        return LLMCallConfig(
            model=self.openai_model,
            temperature=self.temperature,
            top_p=self.top_p,
            max_output_tokens=self.max_output_tokens,
        )

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ValueError(f"YAML config must contain object root: {path}")

        return data

    @property
    def pricing_config(self) -> dict[str, Any]:
        return self.load_yaml(self.resolved_pricing_config_path)

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
