"""Custom exceptions for the firmware symbol catalog."""


class CatalogError(Exception):
    """Base exception for the firmware symbol catalog."""


class ConfigError(CatalogError, ValueError):
    """Raised when catalog construction parameters are missing or invalid."""


class StorageError(CatalogError):
    """Raised when the catalog storage cannot be used."""


class CatalogClosedError(StorageError):
    """Raised when an operation is attempted on a closed catalog."""


class NotFoundError(CatalogError):
    """Raised when a lookup matches no stored record."""


class ManifestNotFoundError(CatalogError):
    """Raised when an ingest manifest file cannot be found."""


class ManifestParseError(CatalogError):
    """Raised when an ingest manifest cannot be parsed or validated."""
