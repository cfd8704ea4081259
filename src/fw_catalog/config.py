"""Catalog configuration module.

The catalog is a single SQLite file. Configuration is either passed
explicitly or read from environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from fw_catalog.exceptions import ConfigError

DEFAULT_BATCH_SIZE = 1000


@dataclass
class CatalogConfig:
    """Catalog configuration container.

    Attributes:
        path: Path to the SQLite database file.
        batch_size: Number of rows a bulk write groups into one commit.
    """

    path: Path | None = None
    batch_size: int = DEFAULT_BATCH_SIZE

    @classmethod
    def from_env(cls) -> "CatalogConfig":
        """Create configuration from environment variables.

        Environment variables:
            FWCAT_DB_PATH: SQLite database path (default: "catalog.db")
            FWCAT_BATCH_SIZE: Rows per bulk write (default: 1000)
        """
        raw_batch = os.getenv("FWCAT_BATCH_SIZE", str(DEFAULT_BATCH_SIZE))
        try:
            batch_size = int(raw_batch)
        except ValueError:
            raise ConfigError(f"FWCAT_BATCH_SIZE must be an integer, got {raw_batch!r}") from None

        raw_path = os.getenv("FWCAT_DB_PATH", "catalog.db")
        return cls(
            path=Path(raw_path).resolve() if raw_path else None,
            batch_size=batch_size,
        )

    def validate(self) -> None:
        """Validate the configuration.

        Raises:
            ConfigError: If required configuration is missing or invalid.
        """
        if self.path is None or not str(self.path).strip():
            raise ConfigError("'path' is required")
        if self.batch_size < 1:
            raise ConfigError(f"'batch_size' must be a positive integer, got {self.batch_size}")
