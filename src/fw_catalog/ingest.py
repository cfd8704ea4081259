"""Write firmware manifests into the catalog.

Bulk ingestion is resumable but not atomic: every batch is committed on its
own. `run_resumable` re-runs a whole ingestion after a transient storage
failure; create-or-find makes the re-run skip what was already committed.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, TypeVar

from sqlalchemy.exc import OperationalError

from fw_catalog.catalog import Catalog
from fw_catalog.db_models import Artifact, BinaryImage, Device, Kernelcache, SharedCache, Symbol
from fw_catalog.models import FirmwareManifest, ImageEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_resumable(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    retry_on: tuple[type[BaseException], ...] = (OperationalError,),
) -> T:
    """Run an idempotent operation, re-running it from the start on failure.

    Args:
        operation: Callable performing the (idempotent) bulk write.
        attempts: Total number of runs before giving up.
        retry_on: Exception types treated as transient.

    Returns:
        Whatever the successful run returned.

    Raises:
        ValueError: If `attempts` is smaller than 1.
        The last exception raised by `operation` once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    attempt = 1
    while True:
        try:
            return operation()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            logger.warning("attempt %d/%d failed (%s); resuming", attempt, attempts, exc)
            attempt += 1


@dataclass
class IngestReport:
    """Counts of what one manifest ingestion touched."""

    artifact: Artifact
    devices: int = 0
    images: int = 0
    symbols: int = 0


def _ingest_image(
    catalog: Catalog,
    report: IngestReport,
    entry: ImageEntry,
    *,
    kernelcache_id: Optional[int] = None,
    shared_cache_id: Optional[int] = None,
) -> BinaryImage:
    image = catalog.create_or_find(
        BinaryImage(
            artifact_id=report.artifact.id,
            kernelcache_id=kernelcache_id,
            shared_cache_id=shared_cache_id,
            uuid=entry.uuid,
            name=entry.name,
            text_start=entry.text_start,
            text_end=entry.text_end,
        )
    )
    linked = catalog.link_symbols(
        image.uuid,
        (Symbol(name=s.name, start=s.start, end=s.end) for s in entry.symbols),
    )
    report.images += 1
    report.symbols += len(linked)
    return image


def ingest_manifest(catalog: Catalog, manifest: FirmwareManifest) -> IngestReport:
    """Store everything described by `manifest`.

    Every write goes through create-or-find, so ingesting the same manifest
    again (for instance after an interrupted run) adds nothing new.
    """
    artifact = catalog.create_or_find(
        Artifact(name=manifest.name, version=manifest.version, build_id=manifest.build_id)
    )
    report = IngestReport(artifact=artifact)
    logger.info("ingesting %s (id=%s)", artifact.name, artifact.id)

    devices = catalog.create_or_find_many(
        Device(artifact_id=artifact.id, name=name) for name in manifest.devices
    )
    report.devices = len(devices)

    if manifest.kernelcache is not None:
        kc = manifest.kernelcache
        kernelcache = catalog.create_or_find(
            Kernelcache(artifact_id=artifact.id, uuid=kc.uuid, version=kc.version)
        )
        for kext in kc.kexts:
            _ingest_image(catalog, report, kext, kernelcache_id=kernelcache.id)

    for entry in manifest.shared_caches:
        cache = catalog.create_or_find(
            SharedCache(
                artifact_id=artifact.id,
                uuid=entry.uuid,
                platform=entry.platform,
                shared_region_start=entry.shared_region_start,
            )
        )
        logger.debug("shared cache %s: %d image(s)", cache.uuid, len(entry.images))
        for image in entry.images:
            _ingest_image(catalog, report, image, shared_cache_id=cache.id)

    for image in manifest.images:
        _ingest_image(catalog, report, image)

    logger.info(
        "ingested %s: %d device(s), %d image(s), %d symbol link(s)",
        artifact.name,
        report.devices,
        report.images,
        report.symbols,
    )
    return report
