from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from fw_catalog.catalog import Catalog
from fw_catalog.config import CatalogConfig
from fw_catalog.db_models import Artifact, BinaryImage, Device, Kernelcache, SharedCache, Symbol
from fw_catalog.exceptions import CatalogClosedError, NotFoundError, StorageError

IPSW = "iPhone15,2_17.0_21A329_Restore.ipsw"


def test_create_or_find_is_idempotent(catalog: Catalog) -> None:
    first = catalog.create_or_find(Artifact(name=IPSW, version="17.0", build_id="21A329"))
    second = catalog.create_or_find(Artifact(name=IPSW))

    assert first.id is not None
    assert first.created_at is not None
    assert second.id == first.id
    assert second.model_dump() == first.model_dump()
    assert catalog.count(Artifact) == 1


def test_create_or_find_returns_stored_contents_not_candidate(catalog: Catalog) -> None:
    catalog.create_or_find(Artifact(name=IPSW, version="17.0"))

    again = catalog.create_or_find(Artifact(name=IPSW, version="99.9"))

    assert again.version == "17.0"
    assert catalog.get_artifact_by_name(IPSW).version == "17.0"


def test_create_or_find_keys_on_composite_natural_key(catalog: Catalog) -> None:
    a = catalog.create_or_find(Artifact(name="a.ipsw"))
    b = catalog.create_or_find(Artifact(name="b.ipsw"))

    d1 = catalog.create_or_find(Device(artifact_id=a.id, name="iPhone15,2"))
    d2 = catalog.create_or_find(Device(artifact_id=b.id, name="iPhone15,2"))
    d3 = catalog.create_or_find(Device(artifact_id=a.id, name="iPhone15,2"))

    assert d1.id != d2.id
    assert d3.id == d1.id
    assert catalog.count(Device) == 2


def test_create_or_find_many_dedups_within_and_across_batches(tmp_path: Path) -> None:
    with Catalog.open(tmp_path / "batch.db", batch_size=3) as cat:
        records = [Symbol(name=f"_f{i % 5}", start=i % 5 * 0x10, end=i % 5 * 0x10 + 0x10) for i in range(12)]

        stored = cat.create_or_find_many(records)

        assert len(stored) == 12
        assert cat.count(Symbol) == 5
        assert stored[0].id == stored[5].id == stored[10].id


def test_save_overwrites_every_field(catalog: Catalog) -> None:
    original = catalog.create_or_find(Artifact(name=IPSW, version="17.0", build_id="21A329"))

    revised = Artifact(id=original.id, name="renamed.ipsw", version="17.0.1", build_id=None)
    catalog.save(revised)
    got = catalog.get_artifact(original.id)

    assert got.id == original.id
    assert got.name == "renamed.ipsw"
    assert got.version == "17.0.1"
    assert got.build_id is None
    assert got.created_at == original.created_at
    assert revised.created_at == original.created_at


def test_save_without_id_inserts(catalog: Catalog) -> None:
    saved = catalog.save(Kernelcache(uuid="4C4C4411-5555-3144-A1E8-2E5B5A0B0D31", version="Darwin 23.0.0"))

    assert saved.id is not None
    assert catalog.count(Kernelcache) == 1


def test_save_revises_symbol_range(catalog: Catalog, make_image) -> None:
    make_image("U1")
    [sym] = catalog.link_symbols("U1", [Symbol(name="_main", start=0x100, end=0x180)])

    catalog.save(Symbol(id=sym.id, name="_main", start=0x100, end=0x200))

    assert catalog.resolve_symbol("U1", 0x1F0).id == sym.id


def test_get_artifact_missing_raises_not_found(catalog: Catalog) -> None:
    with pytest.raises(NotFoundError):
        catalog.get_artifact(12345)


def test_get_artifact_by_name_missing_raises_not_found(catalog: Catalog) -> None:
    with pytest.raises(NotFoundError):
        catalog.get_artifact_by_name("nonexistent")


def test_get_image(catalog: Catalog, make_image) -> None:
    make_image("U1", name="/usr/lib/libSystem.B.dylib")

    assert catalog.get_image("U1").name == "/usr/lib/libSystem.B.dylib"
    with pytest.raises(NotFoundError):
        catalog.get_image("U2")


def test_delete_artifact(catalog: Catalog) -> None:
    artifact = catalog.create_or_find(Artifact(name=IPSW))

    catalog.delete_artifact(artifact.id)

    with pytest.raises(NotFoundError):
        catalog.get_artifact(artifact.id)
    with pytest.raises(NotFoundError):
        catalog.delete_artifact(artifact.id)


def test_delete_artifact_does_not_cascade(catalog: Catalog) -> None:
    artifact = catalog.create_or_find(Artifact(name=IPSW))
    catalog.create_or_find(Device(artifact_id=artifact.id, name="iPhone15,2"))
    catalog.create_or_find(SharedCache(artifact_id=artifact.id, uuid="DSC-1"))
    catalog.create_or_find(BinaryImage(artifact_id=artifact.id, uuid="U1", name="/usr/lib/libobjc.A.dylib"))
    catalog.link_symbols("U1", [Symbol(name="_objc_msgSend", start=0x1000, end=0x1100)])

    catalog.delete_artifact(artifact.id)

    assert catalog.count(Device) == 1
    assert catalog.count(SharedCache) == 1
    assert catalog.get_image("U1").artifact_id is None
    assert catalog.resolve_symbol("U1", 0x1004).name == "_objc_msgSend"


def test_inventory_lists_related_records(catalog: Catalog) -> None:
    artifact = catalog.create_or_find(Artifact(name=IPSW))
    catalog.create_or_find(Device(artifact_id=artifact.id, name="iPhone15,3"))
    catalog.create_or_find(Device(artifact_id=artifact.id, name="iPhone15,2"))
    catalog.create_or_find(Kernelcache(artifact_id=artifact.id, uuid="KC"))
    catalog.create_or_find(BinaryImage(artifact_id=artifact.id, uuid="U1", name="/sbin/launchd"))

    inventory = catalog.get_inventory(artifact.id)

    assert inventory.artifact.name == IPSW
    assert [d.name for d in inventory.devices] == ["iPhone15,2", "iPhone15,3"]
    assert inventory.kernelcache is not None and inventory.kernelcache.uuid == "KC"
    assert inventory.shared_caches == []
    assert [i.uuid for i in inventory.images] == ["U1"]


def test_operations_after_close_are_rejected(catalog: Catalog) -> None:
    catalog.close()

    with pytest.raises(CatalogClosedError):
        catalog.create_or_find(Artifact(name=IPSW))
    with pytest.raises(CatalogClosedError):
        catalog.resolve_symbol("U1", 0)
    with pytest.raises(StorageError):
        catalog.close()


def test_context_manager_closes(tmp_path: Path) -> None:
    with Catalog.open(tmp_path / "ctx.db") as cat:
        cat.create_or_find(Artifact(name=IPSW))
    assert cat.closed

    with Catalog.open(tmp_path / "ctx.db") as reopened:
        assert reopened.get_artifact_by_name(IPSW).name == IPSW


def test_open_on_corrupt_file_raises_storage_error(tmp_path: Path) -> None:
    path = tmp_path / "corrupt.db"
    path.write_bytes(b"this is not a sqlite database" * 64)

    with pytest.raises(StorageError):
        Catalog.open(path)


def test_timestamps_round_trip_through_storage(catalog: Catalog) -> None:
    created = catalog.create_or_find(Artifact(name=IPSW))

    stored = catalog.get_artifact(created.id)

    assert isinstance(stored.created_at, datetime)
    assert isinstance(stored.updated_at, datetime)
    assert stored.created_at == created.created_at
    assert stored.updated_at == created.updated_at


def test_open_under_a_file_raises_storage_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    cat = Catalog(CatalogConfig(path=blocker / "sub" / "catalog.db"))
    with pytest.raises(StorageError):
        cat.connect()
    assert cat.closed
