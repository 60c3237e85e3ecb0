from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field

class DocumentRecord(BaseModel):
    """One source row ready to be written to the sink."""
    id: Optional[str] = Field(None, description="Document id; None lets the sink assign one")
    fields: Dict[str, Optional[str]] = Field(default_factory=dict, description="Column name to string value")
    batch_timestamp: int = Field(..., description="Epoch seconds of the cycle that wrote the document")

class BaseSink(ABC):
    """Abstract Base Class for document sinks."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    @abstractmethod
    def create_index(self, index: str, doc_type: str) -> None:
        """Creates the index with timestamp tracking for doc_type. Raises IndexAlreadyExists if present."""
        pass

    @abstractmethod
    def put_mapping(self, index: str, doc_type: str, ignore_conflicts: bool = True) -> None:
        """Adds the timestamp-tracking mapping for doc_type to an existing index."""
        pass

    @abstractmethod
    def upsert(self, index: str, doc_type: str, doc_id: Optional[str], fields: Dict[str, Any], timestamp: int) -> str:
        """Indexes one document tagged with timestamp and returns its id."""
        pass

    @abstractmethod
    def refresh(self, index: str) -> None:
        """Makes all writes so far visible to searches and delete-by-query."""
        pass

    @abstractmethod
    def delete_by_query(self, index: str, doc_type: str, threshold: int) -> int:
        """Deletes documents of doc_type whose timestamp is strictly below threshold."""
        pass

    def close(self) -> None:
        """Releases the underlying client."""
        pass
