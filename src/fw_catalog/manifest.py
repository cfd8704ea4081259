"""Find and load firmware ingest manifests from JSON files."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from fw_catalog.exceptions import ManifestNotFoundError, ManifestParseError
from fw_catalog.models import FirmwareManifest

logger = logging.getLogger(__name__)


def _is_manifest_candidate(path: Path) -> bool:
    """Tell manifests apart from other JSON files sitting in the same folder.

    Files that cannot be read or decoded are kept, so that `load_manifest`
    reports them instead of them vanishing silently.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return True
    return isinstance(data, dict) and "name" in data


def find_manifest_files(root: Path) -> list[Path]:
    """Find ingest manifests under root.

    A directory is scanned recursively for ``*.json`` files; JSON documents
    that are not objects with a ``name`` key (package metadata, symbol
    dumps, ...) are skipped.

    Args:
        root: A directory to scan, or a single manifest file.

    Returns:
        Sorted list of manifest files.
    """
    if root.is_file():
        return [root]

    manifests: list[Path] = []
    for p in sorted(root.rglob("*")):
        if not p.is_file() or p.suffix.lower() != ".json":
            continue
        if _is_manifest_candidate(p):
            manifests.append(p)
        else:
            logger.debug("skipping %s: not a firmware manifest", p)
    return manifests


def load_manifest(path: Path) -> FirmwareManifest:
    """Parse and validate a manifest file.

    Args:
        path: Path to the JSON manifest.

    Raises:
        ManifestNotFoundError: If the file does not exist.
        ManifestParseError: If the file cannot be read, is not JSON, or does
            not describe a valid artifact.

    Returns:
        The validated manifest.
    """
    if not path.exists():
        raise ManifestNotFoundError(f"manifest not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestParseError(f"Failed to read manifest: {path}") from exc
    try:
        return FirmwareManifest.model_validate_json(text)
    except ValidationError as exc:
        raise ManifestParseError(f"Invalid manifest {path}: {exc.error_count()} error(s)") from exc
