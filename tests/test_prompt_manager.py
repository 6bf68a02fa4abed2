from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from tradeplan.prompts.manager import PromptManager

PROMPTS_ROOT = Path(__file__).resolve().parents[1] / "tradeplan" / "prompts"


def _create_prompt_version(
    *,
    root: Path,
    prompt_name: str,
    version: str,
    system_text: str = "system",
    schema_payload: object = None,
    skip: tuple[str, ...] = (),
) -> Path:
    target = root / prompt_name / version
    target.mkdir(parents=True, exist_ok=True)
    files = {
        "system_prompt.txt": system_text,
        "strict_suffix.txt": "JSON only.\n",
        "primary_prompt.txt": "STATE:\n$state_json\n\nSCHEMA:\n$schema_text\n",
        "corrective_prompt.txt": "Invalid: $critique\n$state_json\n$schema_text\n",
        "schema.json": json.dumps(
            schema_payload if schema_payload is not None else {"version": "number"}
        ),
    }
    for filename, content in files.items():
        if filename not in skip:
            (target / filename).write_text(content, encoding="utf-8")
    (target / "meta.yaml").write_text(
        yaml.safe_dump({"created_at": "2026-01-01T00:00:00+00:00"}),
        encoding="utf-8",
    )
    return target


def test_prompt_manager_discovery_sorts_versions(tmp_path: Path) -> None:
    prompts_root = tmp_path / "prompts"
    for version in ("v010", "v002", "v001"):
        _create_prompt_version(
            root=prompts_root, prompt_name="plan_generation", version=version
        )
    (prompts_root / "plan_generation" / "draft").mkdir()
    (prompts_root / "empty").mkdir()

    manager = PromptManager(prompts_root)

    assert manager.list_prompt_names() == ["plan_generation"]
    assert manager.list_versions("plan_generation") == ["v001", "v002", "v010"]
    assert manager.list_versions("missing") == []


def test_prompt_set_renders_templates(tmp_path: Path) -> None:
    prompts_root = tmp_path / "prompts"
    _create_prompt_version(
        root=prompts_root,
        prompt_name="plan_generation",
        version="v001",
        system_text="Return data.\n",
    )

    prompt_set = PromptManager(prompts_root).load_prompt_set(
        prompt_name="plan_generation", version="v001"
    )
    state = {"positions": [{"ticker": "AMZN"}], "cash": {"sleeve_value": 1}}

    assert prompt_set.system_prompt() == "Return data."
    assert prompt_set.system_prompt(strict=True) == "Return data. JSON only."
    primary = prompt_set.primary_prompt(state)
    assert '"ticker":"AMZN"' in primary
    assert '{"version": "number"}' in primary
    corrective = prompt_set.corrective_prompt(state, "missing cash_tracker{}")
    assert corrective.startswith("Invalid: missing cash_tracker{}")
    assert prompt_set.meta["created_at"] == "2026-01-01T00:00:00+00:00"


def test_prompt_manager_requires_all_assets(tmp_path: Path) -> None:
    prompts_root = tmp_path / "prompts"
    _create_prompt_version(
        root=prompts_root,
        prompt_name="plan_generation",
        version="v001",
        skip=("corrective_prompt.txt",),
    )

    with pytest.raises(FileNotFoundError, match="corrective_prompt.txt"):
        PromptManager(prompts_root).load_prompt_set(
            prompt_name="plan_generation", version="v001"
        )


def test_prompt_manager_rejects_bad_version_and_schema(tmp_path: Path) -> None:
    prompts_root = tmp_path / "prompts"
    _create_prompt_version(
        root=prompts_root,
        prompt_name="plan_generation",
        version="v001",
        schema_payload=["not", "an", "object"],
    )
    manager = PromptManager(prompts_root)

    with pytest.raises(ValueError, match="Invalid prompt version"):
        manager.load_prompt_set(prompt_name="plan_generation", version="1")
    with pytest.raises(ValueError, match="root must be an object"):
        manager.load_prompt_set(prompt_name="plan_generation", version="v001")


def test_bundled_prompt_set_loads() -> None:
    prompt_set = PromptManager(PROMPTS_ROOT).load_prompt_set(
        prompt_name="plan_generation", version="v001"
    )

    assert "OWNED tickers ONLY" in prompt_set.system_prompt()
    assert prompt_set.system_prompt(strict=True).endswith(
        "DO NOT include any text outside the JSON."
    )
    assert "$state_json" not in prompt_set.primary_prompt({"positions": []})
    schema = json.loads(prompt_set.schema_text)
    assert {"market_pulse", "cash_tracker", "portfolio_snapshot"} <= set(schema)
