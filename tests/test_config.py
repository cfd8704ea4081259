from __future__ import annotations

from pathlib import Path

import pytest

from fw_catalog.catalog import Catalog
from fw_catalog.config import DEFAULT_BATCH_SIZE, CatalogConfig
from fw_catalog.exceptions import ConfigError


def test_from_env_reads_path_and_batch_size(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FWCAT_DB_PATH", str(tmp_path / "fw.db"))
    monkeypatch.setenv("FWCAT_BATCH_SIZE", "250")

    config = CatalogConfig.from_env()

    assert config.path == (tmp_path / "fw.db").resolve()
    assert config.batch_size == 250


def test_from_env_defaults_batch_size() -> None:
    assert CatalogConfig.from_env().batch_size == DEFAULT_BATCH_SIZE


def test_from_env_rejects_non_integer_batch_size(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FWCAT_BATCH_SIZE", "lots")
    with pytest.raises(ConfigError):
        CatalogConfig.from_env()


def test_validate_requires_path() -> None:
    with pytest.raises(ConfigError, match="'path' is required"):
        CatalogConfig(path=None).validate()


def test_validate_rejects_non_positive_batch_size(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        CatalogConfig(path=tmp_path / "x.db", batch_size=0).validate()


def test_open_with_empty_path_fails_before_touching_storage(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigError):
        Catalog.open("")
    assert list(tmp_path.iterdir()) == []


def test_config_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        Catalog.open(None)
