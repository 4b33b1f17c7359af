from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from member_scraper.config.loader import ConfigLocator, ConfigRepository
from member_scraper.config.models import GlobalConfig


def test_config_locator_uses_env_and_creates_directories(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMBER_SCRAPER_HOME", str(tmp_path))
    locator = ConfigLocator()
    assert locator.project_root == tmp_path.resolve()
    assert locator.data_dir.exists()
    assert locator.logs_dir.exists()
    assert locator.global_config_path() == tmp_path.resolve() / "data" / "global_config.yaml"


def test_first_load_writes_default_config(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load_global_config()
    path = temp_config_repository.locator.global_config_path()
    assert config == GlobalConfig()
    assert path.exists()
    assert yaml.safe_load(path.read_text(encoding="utf-8"))["export"]["base_name"] == "scrape_results"


def test_config_repository_global_roundtrip(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MEMBER_SCRAPER_HOME", raising=False)
    repo = ConfigRepository(ConfigLocator(project_root=tmp_path))
    config = GlobalConfig.model_validate({"ingestion": {"workers": 8}, "enable_progress_bar": False})
    repo.save_global_config(config)

    fresh = ConfigRepository(ConfigLocator(project_root=tmp_path))
    assert fresh.load_global_config() == config


def test_load_explicit_file(temp_config_repository: ConfigRepository, tmp_path: Path) -> None:
    path = tmp_path / "custom.json"
    path.write_text('{"export": {"formats": "csv", "base_name": "members"}}', encoding="utf-8")
    config = temp_config_repository.load_file(path)
    assert config.export.formats == ["csv"]
    assert config.export.base_name == "members"


def test_load_file_errors(temp_config_repository: ConfigRepository, tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        temp_config_repository.load_file(tmp_path / "absent.yaml")
    bad = tmp_path / "config.toml"
    bad.write_text("x = 1", encoding="utf-8")
    with pytest.raises(ValueError):
        temp_config_repository.load_file(bad)
    not_mapping = tmp_path / "list.yaml"
    not_mapping.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        temp_config_repository.load_file(not_mapping)
