"""Rich rendering utilities for catalog contents."""

from __future__ import annotations

from rich.tree import Tree

from fw_catalog.catalog import ArtifactInventory


def _hex(value: int | None) -> str:
    return "?" if value is None else f"{value:#x}"


def build_artifact_tree(inventory: ArtifactInventory) -> Tree:
    """Build a Rich Tree of an artifact and everything it bundles.

    Args:
        inventory: Artifact with its related records.

    Returns:
        A Rich Tree object for rendering.
    """
    artifact = inventory.artifact
    label = f"[bold]{artifact.name}[/bold]"
    if artifact.version or artifact.build_id:
        label += f" [dim]{artifact.version or '?'} ({artifact.build_id or '?'})[/dim]"
    root = Tree(label)

    if inventory.devices:
        devices = root.add("devices")
        for device in inventory.devices:
            devices.add(device.name)

    if inventory.kernelcache is not None:
        kc = inventory.kernelcache
        root.add(f"kernelcache {kc.uuid} [dim]{kc.version or ''}[/dim]")

    for cache in inventory.shared_caches:
        root.add(f"shared cache {cache.uuid} [dim]{cache.platform or ''} @ {_hex(cache.shared_region_start)}[/dim]")

    if inventory.images:
        images = root.add(f"images ({len(inventory.images)})")
        for image in inventory.images:
            images.add(f"{image.name or '?'} [dim]{image.uuid}[/dim]")
    elif not (inventory.devices or inventory.kernelcache or inventory.shared_caches):
        root.add("[dim]Nothing stored for this artifact[/dim]")
    return root
