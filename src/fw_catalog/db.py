"""Database engine creation and schema management.

The catalog lives in a single SQLite file. `migrate` brings an existing file
up to date with the table definitions in `fw_catalog.db_models`.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from alembic.autogenerate import compare_metadata
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

# Registers the catalog tables on SQLModel.metadata.
from fw_catalog import db_models  # noqa: F401

logger = logging.getLogger(__name__)


def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_sqlite_engine(db_path: Path) -> Engine:
    """Create a SQLite engine.

    Foreign key enforcement is switched on for every pooled connection so
    that `ON DELETE SET NULL` on artifact references is honoured.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        SQLAlchemy Engine connected to the SQLite database.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}", echo=False)
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def _additive_column(column: sa.Column) -> sa.Column:
    # SQLite cannot add NOT NULL columns without a default, nor UNIQUE ones.
    return sa.Column(column.name, column.type, nullable=True)


def _add_column(operations: Operations, schema: str | None, table_name: str, column: sa.Column) -> None:
    logger.info("adding column %s.%s", table_name, column.name)
    operations.add_column(table_name, _additive_column(column), schema=schema)
    # Indexed unique columns come back through the index diff; a bare
    # unique=True is a table constraint, so it becomes a unique index here.
    if column.unique and not column.index:
        index_name = f"uq_{table_name}_{column.name}"
        logger.info("adding unique index %s", index_name)
        operations.create_index(index_name, table_name, [column.name], unique=True, schema=schema)


def migrate(engine: Engine) -> None:
    """Create missing tables, columns and indexes.

    Changes are strictly additive: columns that exist in the file but not in
    the models are left alone, and type differences are ignored. Safe to call
    on every open.

    Args:
        engine: SQLAlchemy Engine to migrate.
    """
    metadata = SQLModel.metadata
    with engine.begin() as connection:
        metadata.create_all(connection)

        context = MigrationContext.configure(connection)
        operations = Operations(context)
        for diff in compare_metadata(context, metadata):
            # modify_* differences come back grouped in lists
            if isinstance(diff, list):
                continue
            kind = diff[0]
            if kind == "add_column":
                _, schema, table_name, column = diff
                _add_column(operations, schema, table_name, column)
            elif kind == "add_index":
                index = diff[1]
                logger.info("adding index %s", index.name)
                index.create(connection, checkfirst=True)
            else:
                logger.debug("ignoring schema difference %s", kind)
