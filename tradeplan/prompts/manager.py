from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any

import yaml

from tradeplan.pipeline.canonicalize import canonical_json

VERSION_RE = re.compile(r"^v(\d{3})$")

_REQUIRED_FILES = (
    "system_prompt.txt",
    "strict_suffix.txt",
    "primary_prompt.txt",
    "corrective_prompt.txt",
    "schema.json",
)


@dataclass(frozen=True, slots=True)
class PromptSet:
    prompt_name: str
    version: str
    system_prompt_text: str
    strict_suffix_text: str
    primary_template: str
    corrective_template: str
    schema_text: str
    meta: dict[str, Any]
    prompt_dir: Path

    def system_prompt(self, *, strict: bool = False) -> str:
        base = self.system_prompt_text.rstrip()
        if strict:
            return f"{base} {self.strict_suffix_text.strip()}"
        return base

    def primary_prompt(self, state: dict[str, Any]) -> str:
        return Template(self.primary_template).safe_substitute(
            state_json=canonical_json(state),
            schema_text=self.schema_text.strip(),
        ).strip()

    def corrective_prompt(self, state: dict[str, Any], critique: str) -> str:
        return Template(self.corrective_template).safe_substitute(
            state_json=canonical_json(state),
            schema_text=self.schema_text.strip(),
            critique=critique,
        ).strip()


class PromptManager:
    def __init__(self, prompts_root: Path | str) -> None:
        self.prompts_root = Path(prompts_root)

    def list_prompt_names(self) -> list[str]:
        if not self.prompts_root.exists():
            return []

        names: list[str] = []
        for child in self.prompts_root.iterdir():
            if not child.is_dir():
                continue
            if child.name.startswith("__"):
                continue
            if self.list_versions(child.name):
                names.append(child.name)
        return sorted(names)

    def list_versions(self, prompt_name: str) -> list[str]:
        prompt_dir = self.prompts_root / prompt_name
        if not prompt_dir.exists() or not prompt_dir.is_dir():
            return []

        versions: list[str] = []
        for child in prompt_dir.iterdir():
            if not child.is_dir():
                continue
            if VERSION_RE.match(child.name):
                versions.append(child.name)

        return sorted(versions, key=_version_to_int)

    def load_prompt_set(self, *, prompt_name: str, version: str) -> PromptSet:
        prompt_dir = self._prompt_dir(prompt_name=prompt_name, version=version)
        for filename in _REQUIRED_FILES:
            path = prompt_dir / filename
            if not path.exists():
                raise FileNotFoundError(f"prompt asset not found: {path}")

        schema_text = (prompt_dir / "schema.json").read_text(encoding="utf-8")
        _validate_schema_text(schema_text)

        meta: dict[str, Any] = {}
        meta_path = prompt_dir / "meta.yaml"
        if meta_path.exists():
            parsed_meta = yaml.safe_load(meta_path.read_text(encoding="utf-8")) or {}
            if isinstance(parsed_meta, dict):
                meta = parsed_meta

        return PromptSet(
            prompt_name=prompt_name,
            version=version,
            system_prompt_text=_read(prompt_dir / "system_prompt.txt"),
            strict_suffix_text=_read(prompt_dir / "strict_suffix.txt"),
            primary_template=_read(prompt_dir / "primary_prompt.txt"),
            corrective_template=_read(prompt_dir / "corrective_prompt.txt"),
            schema_text=schema_text,
            meta=meta,
            prompt_dir=prompt_dir,
        )

    def _prompt_dir(self, *, prompt_name: str, version: str) -> Path:
        if not VERSION_RE.match(version):
            raise ValueError(f"Invalid prompt version format: {version}")
        return self.prompts_root / prompt_name / version


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _validate_schema_text(schema_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(schema_text)
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid schema JSON: {error}") from error

    if not isinstance(parsed, dict):
        raise ValueError("Schema JSON root must be an object")

    return parsed


def _version_to_int(version: str) -> int:
    match = VERSION_RE.match(version)
    if match is None:
        raise ValueError(f"Invalid version format: {version}")
    return int(match.group(1))
