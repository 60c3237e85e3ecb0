"""Stale document purge for the river index."""

import logging
from typing import Optional

from sqlriver.connectors.base import BaseSink
from sqlriver.exceptions import PurgeFailure


class StalePurger:
    """Deletes documents not refreshed by the current cycle."""

    def __init__(self, sink: BaseSink, log: Optional[logging.Logger] = None):
        self.sink = sink
        self.log = log or logging.getLogger(__name__)

    def purge(self, index: str, doc_type: str, threshold: int) -> int:
        """
        Delete every document of doc_type whose batch timestamp is strictly
        below threshold. Must only run after all writes of the cycle.

        Returns:
            Number of documents deleted

        Raises:
            PurgeFailure: the refresh or the delete failed
        """
        self.log.info(f"Removing old entries of {index}/{doc_type} older than {threshold}")
        try:
            self.sink.refresh(index)
            deleted = self.sink.delete_by_query(index, doc_type, threshold)
        except PurgeFailure:
            raise
        except Exception as e:
            raise PurgeFailure(f"Purge of {index}/{doc_type} failed: {e}") from e
        self.log.info(f"Old entries have been removed from {index}: {deleted} deleted")
        return deleted
