"""Settings loading for template size limits and pipeline tuning."""

from __future__ import annotations

import os
from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError

SETTINGS_ENV = "SURVEYDOC_SETTINGS"


class GeneratorSettings(BaseModel):
    """Pipeline settings loaded from YAML."""

    model_config = ConfigDict(extra="forbid")

    max_template_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    max_package_bytes: int = Field(default=50 * 1024 * 1024, gt=0)
    template_suffixes: list[str] = Field(default_factory=lambda: [".docx"], min_length=1)
    context_chars: int = Field(default=50, ge=0)
    max_block_length: int = Field(default=200, gt=0)
    suggestion_min_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    batch_max_workers: int = Field(default=4, gt=0)


def load_settings(path: Path | None = None) -> GeneratorSettings:
    """Load and validate generator settings from YAML.

    Resolution order: explicit ``path``, then ``$SURVEYDOC_SETTINGS``, then the
    bundled ``settings.yaml``.
    """

    if path is None:
        env_path = os.getenv(SETTINGS_ENV)
        path = Path(env_path) if env_path else None
    settings_path = path or Path(__file__).with_name("settings.yaml")

    try:
        raw = yaml.safe_load(settings_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Settings file not found: {settings_path}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in settings file: {settings_path}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Settings file must contain a mapping: {settings_path}")

    try:
        return GeneratorSettings.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid settings schema: {settings_path}") from exc
