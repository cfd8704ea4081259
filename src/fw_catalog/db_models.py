from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

from sqlalchemy import BigInteger, DateTime, Index, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

ADDRESS_MAX = 2**64 - 1
_ADDRESS_BIAS = 2**63


class Address(TypeDecorator):
    """Unsigned 64-bit address stored in a signed SQLite INTEGER.

    Values are shifted by 2**63 so that ordering (and therefore range
    comparisons done in SQL) matches the unsigned ordering.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[int]:
        if value is None:
            return None
        value = int(value)
        if not 0 <= value <= ADDRESS_MAX:
            raise ValueError(f"address out of range: {value:#x}")
        return value - _ADDRESS_BIAS

    def process_result_value(self, value: Any, dialect: Any) -> Optional[int]:
        if value is None:
            return None
        return int(value) + _ADDRESS_BIAS


def _utcnow() -> datetime:
    # naive UTC, matching the timezone-less DateTime columns below
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CatalogModel(SQLModel):
    """Fields shared by every catalog table.

    `id`, `created_at` and `updated_at` are filled in by the persistence
    layer. `natural_key_fields` names the columns used to find an already
    stored copy of a record.
    """

    natural_key_fields: ClassVar[tuple[str, ...]] = ()

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(), sa_column_kwargs={"default": _utcnow}
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(),
        sa_column_kwargs={"default": _utcnow, "onupdate": _utcnow},
    )

    def natural_key(self) -> tuple[Any, ...]:
        return tuple(getattr(self, name) for name in self.natural_key_fields)


GENERATED_FIELDS = frozenset({"id", "created_at", "updated_at"})


class Artifact(CatalogModel, table=True):
    """A firmware archive (e.g. an IPSW). `name` is the external handle."""

    natural_key_fields: ClassVar[tuple[str, ...]] = ("name",)

    name: str = Field(index=True, unique=True)
    version: Optional[str] = None
    build_id: Optional[str] = None


class Device(CatalogModel, table=True):
    """A hardware target an artifact can be installed on."""

    __table_args__ = (UniqueConstraint("artifact_id", "name", name="uq_device_artifact_name"),)
    natural_key_fields: ClassVar[tuple[str, ...]] = ("artifact_id", "name")

    artifact_id: Optional[int] = Field(
        default=None, foreign_key="artifact.id", ondelete="SET NULL", index=True
    )
    name: str
    description: Optional[str] = None


class Kernelcache(CatalogModel, table=True):
    """The kernel image bundled in an artifact (at most one per artifact)."""

    natural_key_fields: ClassVar[tuple[str, ...]] = ("uuid",)

    artifact_id: Optional[int] = Field(
        default=None, foreign_key="artifact.id", ondelete="SET NULL", unique=True
    )
    uuid: str = Field(index=True, unique=True)
    version: Optional[str] = None


class SharedCache(CatalogModel, table=True):
    """A dyld shared cache bundled in an artifact."""

    natural_key_fields: ClassVar[tuple[str, ...]] = ("uuid",)

    artifact_id: Optional[int] = Field(
        default=None, foreign_key="artifact.id", ondelete="SET NULL", index=True
    )
    uuid: str = Field(index=True, unique=True)
    platform: Optional[str] = None
    shared_region_start: Optional[int] = Field(default=None, sa_type=Address)


class BinaryImage(CatalogModel, table=True):
    """A single Mach-O (executable, dylib or kext) identified by its UUID."""

    natural_key_fields: ClassVar[tuple[str, ...]] = ("uuid",)

    artifact_id: Optional[int] = Field(
        default=None, foreign_key="artifact.id", ondelete="SET NULL", index=True
    )
    kernelcache_id: Optional[int] = Field(
        default=None, foreign_key="kernelcache.id", ondelete="SET NULL"
    )
    shared_cache_id: Optional[int] = Field(
        default=None, foreign_key="sharedcache.id", ondelete="SET NULL"
    )
    uuid: str = Field(index=True, unique=True)
    name: Optional[str] = None
    text_start: Optional[int] = Field(default=None, sa_type=Address)
    text_end: Optional[int] = Field(default=None, sa_type=Address)


class Symbol(CatalogModel, table=True):
    """A named half-open address range `[start, end)`.

    Symbols are interned: one row per (name, start, end), shared by every
    image that links to it through ImageSymbolLink.
    """

    __table_args__ = (
        UniqueConstraint("name", "start", "end", name="uq_symbol_name_range"),
        Index("ix_symbol_start_end", "start", "end"),
    )
    natural_key_fields: ClassVar[tuple[str, ...]] = ("name", "start", "end")

    name: str
    start: int = Field(sa_type=Address)
    end: int = Field(sa_type=Address)


class ImageSymbolLink(CatalogModel, table=True):
    """Binds an interned Symbol to a BinaryImage by the image's UUID."""

    __table_args__ = (
        UniqueConstraint("image_uuid", "symbol_id", name="uq_image_symbol"),
    )
    natural_key_fields: ClassVar[tuple[str, ...]] = ("image_uuid", "symbol_id")

    image_uuid: str = Field(foreign_key="binaryimage.uuid", index=True)
    symbol_id: int = Field(foreign_key="symbol.id", index=True)


ENTITY_TYPES: tuple[type[CatalogModel], ...] = (
    Artifact,
    Device,
    Kernelcache,
    SharedCache,
    BinaryImage,
    Symbol,
    ImageSymbolLink,
)
