"""Pydantic models for firmware ingest manifests.

A manifest is what the firmware parser hands over to the catalog: one
artifact with its devices, kernelcache, shared caches, images and symbols.
"""

from __future__ import annotations

import uuid as uuidlib
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from fw_catalog.db_models import ADDRESS_MAX


def normalize_uuid(value: str) -> str:
    """Return the canonical upper-case form of a Mach-O UUID.

    Raises:
        ValueError: If `value` is not a UUID.
    """
    return str(uuidlib.UUID(value.strip())).upper()


def parse_address(value: Any) -> int:
    """Accept an int or a hex/decimal string and return an unsigned 64-bit address."""
    if isinstance(value, bool):
        raise ValueError("address must be an integer")
    if isinstance(value, str):
        value = int(value.strip(), 0)
    if not isinstance(value, int):
        raise ValueError("address must be an integer")
    if not 0 <= value <= ADDRESS_MAX:
        raise ValueError(f"address out of range: {value:#x}")
    return value


class SymbolEntry(BaseModel):
    """A named half-open address range."""

    name: str = Field(..., min_length=1)
    start: int
    end: int

    @field_validator("start", "end", mode="before")
    @classmethod
    def _address(cls, value: Any) -> int:
        return parse_address(value)

    @model_validator(mode="after")
    def _non_empty_range(self) -> SymbolEntry:
        if self.end <= self.start:
            raise ValueError(f"symbol {self.name}: end {self.end:#x} must be greater than start {self.start:#x}")
        return self


class ImageEntry(BaseModel):
    """A Mach-O image and the symbols it exports."""

    uuid: str
    name: str | None = None
    text_start: int | None = None
    text_end: int | None = None
    symbols: list[SymbolEntry] = Field(default_factory=list)

    @field_validator("uuid")
    @classmethod
    def _uuid(cls, value: str) -> str:
        return normalize_uuid(value)

    @field_validator("text_start", "text_end", mode="before")
    @classmethod
    def _address(cls, value: Any) -> int | None:
        return None if value is None else parse_address(value)


class KernelcacheEntry(BaseModel):
    """The kernelcache of an artifact and its kext images."""

    uuid: str
    version: str | None = None
    kexts: list[ImageEntry] = Field(default_factory=list)

    @field_validator("uuid")
    @classmethod
    def _uuid(cls, value: str) -> str:
        return normalize_uuid(value)


class SharedCacheEntry(BaseModel):
    """A dyld shared cache and the dylibs it contains."""

    uuid: str
    platform: str | None = None
    shared_region_start: int | None = None
    images: list[ImageEntry] = Field(default_factory=list)

    @field_validator("uuid")
    @classmethod
    def _uuid(cls, value: str) -> str:
        return normalize_uuid(value)

    @field_validator("shared_region_start", mode="before")
    @classmethod
    def _address(cls, value: Any) -> int | None:
        return None if value is None else parse_address(value)


class FirmwareManifest(BaseModel):
    """Everything extracted from one firmware artifact."""

    name: str = Field(..., min_length=1)
    version: str | None = None
    build_id: str | None = None
    devices: list[str] = Field(default_factory=list)
    kernelcache: KernelcacheEntry | None = None
    shared_caches: list[SharedCacheEntry] = Field(default_factory=list)
    images: list[ImageEntry] = Field(default_factory=list)
