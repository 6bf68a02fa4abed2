from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from tradeplan.config.settings import Settings


def test_settings_reads_env_override(monkeypatch, tmp_path: Path) -> None:
    db_path = tmp_path / "custom.sqlite3"
    monkeypatch.setenv("TRADEPLAN_SQLITE_PATH", str(db_path))
    monkeypatch.setenv("TRADEPLAN_JOB_STORE_BACKEND", "memory")
    monkeypatch.setenv("TRADEPLAN_STAGE_A_TIMEOUT_SECONDS", "12.5")

    settings = Settings(_env_file=None)

    assert settings.sqlite_path == db_path
    assert settings.resolved_sqlite_path == db_path.resolve()
    assert settings.job_store_backend == "memory"
    assert settings.stage_a_timeout_seconds == 12.5


def test_settings_accepts_unprefixed_provider_aliases(monkeypatch) -> None:
    monkeypatch.delenv("TRADEPLAN_OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
    monkeypatch.setenv("MONGO_URI", "mongodb://localhost:27017")
    monkeypatch.setenv("TRADE_ADMIN_KEY", "admin-secret")

    settings = Settings(_env_file=None)

    assert settings.openai_api_key == "sk-test"
    assert settings.openai_model == "gpt-4o"
    assert settings.mongo_uri == "mongodb://localhost:27017"
    assert settings.trade_admin_key == "admin-secret"
    assert settings.llm_call_config().model == "gpt-4o"


def test_settings_defaults_resolve_bundled_assets(monkeypatch) -> None:
    monkeypatch.delenv("TRADEPLAN_PROMPTS_ROOT", raising=False)
    monkeypatch.delenv("TRADEPLAN_PRICING_CONFIG_PATH", raising=False)

    settings = Settings(_env_file=None)

    assert (settings.resolved_prompts_root / "plan_generation" / "v001").is_dir()
    assert settings.resolved_pricing_config_path.exists()
    assert "openai" in settings.pricing_config["llm"]


def test_settings_rejects_stage_budgets_above_host_ceiling(monkeypatch) -> None:
    monkeypatch.setenv("TRADEPLAN_STAGE_A_TIMEOUT_SECONDS", "20")
    monkeypatch.setenv("TRADEPLAN_STAGE_B_TIMEOUT_SECONDS", "20")
    monkeypatch.setenv("TRADEPLAN_HOST_EXECUTION_CEILING_SECONDS", "30")

    with pytest.raises(ValidationError, match="host_execution_ceiling_seconds"):
        Settings(_env_file=None)


def test_settings_splits_cors_origins(monkeypatch) -> None:
    monkeypatch.setenv(
        "TRADEPLAN_CORS_ALLOW_ORIGINS", "https://a.example, https://b.example,"
    )

    settings = Settings(_env_file=None)

    assert settings.cors_origins == ["https://a.example", "https://b.example"]
