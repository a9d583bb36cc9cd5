from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from jobsheet.config import AppConfig, ConfigLocator, ConfigRepository, SheetsConfig


def test_config_locator_uses_env_and_creates_directories(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JOBSHEET_HOME", str(tmp_path))
    locator = ConfigLocator()
    assert locator.project_root == tmp_path.resolve()
    assert locator.data_dir == tmp_path.resolve() / "data"
    assert locator.outputs_dir == tmp_path.resolve() / "data" / "outputs"
    assert locator.logs_dir == tmp_path.resolve() / "logs"
    for path in (locator.data_dir, locator.outputs_dir, locator.logs_dir):
        assert path.exists()
    assert locator.config_path().name == "jobsheet.yaml"


def test_repository_writes_defaults_on_first_load(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load()
    assert config == AppConfig()
    path = temp_config_repository.locator.config_path()
    assert path.exists()
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert payload["sheets"]["backend"] == "csv"
    assert payload["export"]["recover_on_start"] is True


def test_repository_roundtrip_and_reload(temp_config_repository: ConfigRepository) -> None:
    config = AppConfig(sheets=SheetsConfig(backend="google", spreadsheet_id="abc", tab="Roles"))
    temp_config_repository.save(config)
    assert temp_config_repository.reload() == config


def test_database_paths_resolve_against_data_dir(temp_config_repository: ConfigRepository, tmp_path: Path) -> None:
    data_dir = temp_config_repository.locator.data_dir
    assert temp_config_repository.listings_db_path() == data_dir / "listings.db"
    assert temp_config_repository.exports_db_path() == data_dir / "exports.db"

    absolute = tmp_path / "elsewhere" / "exports.db"
    config = AppConfig.model_validate({"storage": {"exports_db": str(absolute)}})
    assert temp_config_repository.exports_db_path(config) == absolute


def test_invalid_yaml_mapping_is_rejected(temp_config_repository: ConfigRepository) -> None:
    temp_config_repository.locator.config_path().write_text("- not\n- a mapping\n", encoding="utf-8")
    with pytest.raises(ValueError):
        temp_config_repository.reload()
