"""Error taxonomy for the river."""

from typing import Optional


class RiverError(Exception):
    """Base class for all river errors."""


class ConfigurationError(RiverError):
    """A required river setting is missing or invalid. Fatal at startup."""

    def __init__(self, key: str, message: Optional[str] = None):
        self.key = key
        super().__init__(message or f"Unable to read required config {key}")


class ProvisioningError(RiverError):
    """Index or mapping creation failed. Skips the current cycle only."""


class IndexAlreadyExists(ProvisioningError):
    """The target index already exists; treated as success."""


class SourceUnavailable(RiverError):
    """Connection to the relational source or query execution failed."""


class DocumentWriteError(RiverError):
    """A single document could not be written to the sink."""

    def __init__(self, message: str, doc_id: Optional[str] = None):
        self.doc_id = doc_id
        super().__init__(message)


class PurgeFailure(RiverError):
    """The stale-document delete failed; written documents are kept."""
