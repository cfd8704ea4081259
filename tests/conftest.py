"""Pytest configuration and fixtures for fw-catalog tests."""
from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from fw_catalog.catalog import Catalog
from fw_catalog.db_models import BinaryImage


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from any catalog configured in the environment."""
    monkeypatch.setenv("FWCAT_DB_PATH", str(tmp_path / "env-catalog.db"))
    monkeypatch.delenv("FWCAT_BATCH_SIZE", raising=False)


@pytest.fixture
def catalog(tmp_path: Path) -> Iterator[Catalog]:
    cat = Catalog.open(tmp_path / "catalog.db", batch_size=100)
    yield cat
    if not cat.closed:
        cat.close()


@pytest.fixture
def make_image(catalog: Catalog) -> Callable[..., BinaryImage]:
    """Factory storing a BinaryImage with the given UUID."""

    def _make(uuid: str, name: str | None = None) -> BinaryImage:
        return catalog.create_or_find(BinaryImage(uuid=uuid, name=name or f"/usr/lib/{uuid}.dylib"))

    return _make
