"""Configuration loading helpers for member-scraper."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import GlobalConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
HOME_ENV_VAR = "MEMBER_SCRAPER_HOME"


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in (".yaml", ".yml")


def _read_mapping(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as stream:
        try:
            data = (yaml.safe_load(stream) or {}) if _is_yaml(path) else json.load(stream)
        except yaml.YAMLError as exc:
            raise ValueError(f"{path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def _dump_mapping(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if _is_yaml(path):
        text = yaml.safe_dump(payload, allow_unicode=True, sort_keys=False)
    else:
        text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    path.write_text(text, encoding="utf-8")


@dataclass(slots=True)
class ConfigLocator:
    """Directory layout of one member-scraper home.

    ``MEMBER_SCRAPER_HOME`` wins over ``project_root``, which defaults to the
    current working directory. ``data/`` and ``logs/`` are created eagerly.
    """

    project_root: Path | None = None
    data_dir: Path = field(init=False)
    logs_dir: Path = field(init=False)

    def __post_init__(self) -> None:
        override = os.environ.get(HOME_ENV_VAR)
        base = Path(override).expanduser() if override else (self.project_root or Path.cwd())
        self.project_root = base.resolve()
        self.data_dir = self.project_root / "data"
        self.logs_dir = self.project_root / "logs"
        for directory in (self.data_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME


class ConfigRepository:
    """Load, cache and persist the ``GlobalConfig`` of a home directory."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._cached: GlobalConfig | None = None

    def load_global_config(self) -> GlobalConfig:
        if self._cached is None:
            path = self.locator.global_config_path()
            if path.exists():
                self._cached = GlobalConfig.model_validate(_read_mapping(path))
            else:
                # first run: materialise the defaults so they can be edited
                self.save_global_config(GlobalConfig())
        return self._cached

    def load_file(self, path: Path) -> GlobalConfig:
        """Load a configuration file given explicitly (``--config``)."""

        path = Path(path)
        if path.suffix.lower() not in CONFIG_EXTENSIONS:
            raise ValueError(f"Unsupported configuration format: {path.suffix or path.name}")
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        self._cached = GlobalConfig.model_validate(_read_mapping(path))
        return self._cached

    def save_global_config(self, config: GlobalConfig) -> None:
        _dump_mapping(self.locator.global_config_path(), config.model_dump(mode="json"))
        self._cached = config


__all__ = ["CONFIG_EXTENSIONS", "ConfigLocator", "ConfigRepository", "HOME_ENV_VAR"]
