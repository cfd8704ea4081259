"""The catalog handle: lifecycle, writers, readers and the deleter.

A `Catalog` owns one SQLite engine. Writes come in two flavours:

    - create-or-find (`create_or_find`, `create_or_find_many`, `link_symbols`):
      idempotent, keyed on each entity's `natural_key_fields`.
    - save: full overwrite keyed on the generated `id`.

Bulk writes commit every `batch_size` records. They are not atomic as a
whole; an interrupted run leaves the committed prefix in place and can be
re-run safely because create-or-find never duplicates a natural key.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path
from typing import Optional, TypeVar

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from fw_catalog.config import DEFAULT_BATCH_SIZE, CatalogConfig
from fw_catalog.db import create_sqlite_engine, migrate
from fw_catalog.db_models import (
    GENERATED_FIELDS,
    Artifact,
    BinaryImage,
    CatalogModel,
    Device,
    ImageSymbolLink,
    Kernelcache,
    SharedCache,
    Symbol,
)
from fw_catalog.exceptions import CatalogClosedError, ConfigError, NotFoundError, StorageError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=CatalogModel)


def _column_names(model: type[CatalogModel]) -> list[str]:
    return [column.key for column in model.__table__.columns]


def _populate(target: CatalogModel, source: CatalogModel) -> None:
    """Copy every stored column of `source` onto `target`."""
    for name in _column_names(type(source)):
        setattr(target, name, getattr(source, name))


def _batched(items: Iterable[ModelT], size: int) -> Iterator[list[ModelT]]:
    iterator = iter(items)
    while batch := list(islice(iterator, size)):
        yield batch


@dataclass
class ArtifactInventory:
    """An artifact together with the records that reference it."""

    artifact: Artifact
    devices: list[Device] = field(default_factory=list)
    kernelcache: Optional[Kernelcache] = None
    shared_caches: list[SharedCache] = field(default_factory=list)
    images: list[BinaryImage] = field(default_factory=list)


class Catalog:
    """Persistent catalog of firmware artifacts, images and symbols."""

    def __init__(self, config: CatalogConfig) -> None:
        config.validate()
        self.config = config
        self._engine: Engine | None = None
        self._closed = False

    @classmethod
    def open(cls, path: str | Path | None, batch_size: int = DEFAULT_BATCH_SIZE) -> Catalog:
        """Open (and migrate) the catalog stored at `path`.

        Raises:
            ConfigError: If `path` is empty or `batch_size` is not positive.
            StorageError: If the file cannot be opened or migrated.
        """
        config = CatalogConfig(path=Path(path) if path else None, batch_size=batch_size)
        catalog = cls(config)
        catalog.connect()
        return catalog

    def connect(self) -> None:
        """Create the engine and bring the schema up to date."""
        if self._closed:
            raise CatalogClosedError("catalog is closed")
        if self._engine is not None:
            return
        if self.config.path is None:
            raise ConfigError("'path' is required")
        engine: Engine | None = None
        try:
            engine = create_sqlite_engine(self.config.path)
            migrate(engine)
        except (SQLAlchemyError, OSError) as exc:
            if engine is not None:
                engine.dispose()
            self._closed = True
            raise StorageError(f"failed to open catalog {self.config.path}") from exc
        self._engine = engine
        logger.info("opened catalog %s (batch size %d)", self.config.path, self.config.batch_size)

    def close(self) -> None:
        """Release the engine. A second call raises CatalogClosedError."""
        if self._closed:
            raise CatalogClosedError("catalog is already closed")
        self._closed = True
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
        logger.info("closed catalog %s", self.config.path)

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> Catalog:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        if not self._closed:
            self.close()

    def _session(self) -> Session:
        if self._closed:
            raise CatalogClosedError("catalog is closed")
        if self._engine is None:
            raise StorageError("catalog is not connected")
        return Session(self._engine, expire_on_commit=False)

    # -- create-or-find -------------------------------------------------

    @staticmethod
    def _find_existing(session: Session, record: ModelT) -> ModelT | None:
        model = type(record)
        conditions = [
            getattr(model, name) == value
            for name, value in zip(model.natural_key_fields, record.natural_key())
        ]
        statement = select(model).where(*conditions)
        return session.exec(statement).first()

    def _create_or_find_in(self, session: Session, record: ModelT) -> ModelT:
        existing = self._find_existing(session, record)
        if existing is None:
            session.add(record)
            session.flush()
            return record
        if existing is not record:
            _populate(record, existing)
        logger.debug(
            "%s %r already stored as id=%s", type(record).__name__, record.natural_key(), existing.id
        )
        return record

    def create_or_find(self, record: ModelT) -> ModelT:
        """Insert `record` unless a row with the same natural key exists.

        Either way `record` comes back carrying the stored row's contents,
        including its generated `id` and timestamps.
        """
        with self._session() as session:
            self._create_or_find_in(session, record)
            session.commit()
        return record

    def create_or_find_many(self, records: Iterable[ModelT]) -> list[ModelT]:
        """Create-or-find every record, committing every `batch_size` records."""
        results: list[ModelT] = []
        for batch in _batched(records, self.config.batch_size):
            with self._session() as session:
                for record in batch:
                    results.append(self._create_or_find_in(session, record))
                session.commit()
            logger.debug("committed batch of %d records", len(batch))
        return results

    def link_symbols(self, image_uuid: str, symbols: Iterable[Symbol]) -> list[Symbol]:
        """Intern `symbols` and link each one to the image `image_uuid`.

        Symbols already stored (by name and range) are reused; only a new
        ImageSymbolLink row is written for them.
        """
        linked: list[Symbol] = []
        for batch in _batched(symbols, self.config.batch_size):
            with self._session() as session:
                for symbol in batch:
                    self._create_or_find_in(session, symbol)
                    self._create_or_find_in(
                        session, ImageSymbolLink(image_uuid=image_uuid, symbol_id=symbol.id)
                    )
                    linked.append(symbol)
                session.commit()
            logger.debug("linked batch of %d symbols to %s", len(batch), image_uuid)
        return linked

    # -- overwrite ------------------------------------------------------

    def save(self, record: ModelT) -> ModelT:
        """Insert `record`, or overwrite every column of the row with its `id`."""
        model = type(record)
        with self._session() as session:
            stored = session.get(model, record.id) if record.id is not None else None
            if stored is None:
                stored = model()
                if record.id is not None:
                    stored.id = record.id
                session.add(stored)
            for name in _column_names(model):
                if name not in GENERATED_FIELDS:
                    setattr(stored, name, getattr(record, name))
            session.commit()
            session.refresh(stored)
            _populate(record, stored)
        return record

    # -- readers --------------------------------------------------------

    def get_artifact(self, artifact_id: int) -> Artifact:
        """Fetch an artifact by its generated id."""
        with self._session() as session:
            artifact = session.get(Artifact, artifact_id)
        if artifact is None:
            raise NotFoundError(f"artifact with id {artifact_id} not found")
        return artifact

    def get_artifact_by_name(self, name: str) -> Artifact:
        """Fetch an artifact by its unique name."""
        with self._session() as session:
            artifact = session.exec(select(Artifact).where(Artifact.name == name)).first()
        if artifact is None:
            raise NotFoundError(f"artifact '{name}' not found")
        return artifact

    def get_image(self, uuid: str) -> BinaryImage:
        """Fetch a binary image by its UUID."""
        with self._session() as session:
            image = session.exec(select(BinaryImage).where(BinaryImage.uuid == uuid)).first()
        if image is None:
            raise NotFoundError(f"image {uuid} not found")
        return image

    def get_symbols_for_image(self, uuid: str) -> list[Symbol]:
        """Return every symbol linked to the image `uuid`, ordered by start."""
        statement = (
            select(Symbol)
            .join(ImageSymbolLink, ImageSymbolLink.symbol_id == Symbol.id)
            .where(ImageSymbolLink.image_uuid == uuid)
            .order_by(Symbol.start, Symbol.id)
        )
        with self._session() as session:
            symbols = list(session.exec(statement).all())
        if not symbols:
            raise NotFoundError(f"no symbols linked to image {uuid}")
        return symbols

    def resolve_symbol(self, uuid: str, address: int) -> Symbol:
        """Return the symbol of image `uuid` whose `[start, end)` covers `address`.

        Only symbols linked to that image are considered. When ranges overlap
        the narrowest one wins, then the lowest start, then the lowest id.
        """
        statement = (
            select(Symbol)
            .join(ImageSymbolLink, ImageSymbolLink.symbol_id == Symbol.id)
            .where(
                ImageSymbolLink.image_uuid == uuid,
                Symbol.start <= address,
                Symbol.end > address,
            )
            .order_by(Symbol.end - Symbol.start, Symbol.start, Symbol.id)
            .limit(1)
        )
        with self._session() as session:
            symbol = session.exec(statement).first()
        if symbol is None:
            raise NotFoundError(f"no symbol in image {uuid} covers {address:#x}")
        return symbol

    def count(self, model: type[CatalogModel]) -> int:
        """Return the number of stored rows of `model`."""
        with self._session() as session:
            return session.exec(select(func.count()).select_from(model)).one()

    def get_inventory(self, artifact_id: int) -> ArtifactInventory:
        """Load an artifact with its devices, kernelcache, caches and images."""
        artifact = self.get_artifact(artifact_id)
        with self._session() as session:
            devices = session.exec(
                select(Device).where(Device.artifact_id == artifact_id).order_by(Device.name)
            ).all()
            kernelcache = session.exec(
                select(Kernelcache).where(Kernelcache.artifact_id == artifact_id)
            ).first()
            caches = session.exec(
                select(SharedCache).where(SharedCache.artifact_id == artifact_id).order_by(SharedCache.uuid)
            ).all()
            images = session.exec(
                select(BinaryImage).where(BinaryImage.artifact_id == artifact_id).order_by(BinaryImage.name)
            ).all()
        return ArtifactInventory(
            artifact=artifact,
            devices=list(devices),
            kernelcache=kernelcache,
            shared_caches=list(caches),
            images=list(images),
        )

    # -- deleter --------------------------------------------------------

    def delete_artifact(self, artifact_id: int) -> None:
        """Delete the artifact row with `artifact_id`.

        Records that reference the artifact are kept; their `artifact_id`
        is set to NULL by the foreign key. Symbols are never touched.
        """
        with self._session() as session:
            artifact = session.get(Artifact, artifact_id)
            if artifact is None:
                raise NotFoundError(f"artifact with id {artifact_id} not found")
            session.delete(artifact)
            session.commit()
        logger.info("deleted artifact %s (id=%d)", artifact.name, artifact_id)
