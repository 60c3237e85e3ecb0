import logging
from typing import Optional

from sqlriver.connectors.base import BaseSink, DocumentRecord
from sqlriver.schemas.sync import BatchContext

PROGRESS_EVERY = 100

class BatchWriter:
    """
    Writes document records to the sink one at a time.
    A failed write is logged and counted; the batch continues.
    """

    def __init__(self, sink: BaseSink, index: str, doc_type: str, log: Optional[logging.Logger] = None):
        self.sink = sink
        self.index = index
        self.doc_type = doc_type
        self.log = log or logging.getLogger(__name__)
        self.written = 0
        self.failed = 0

    def write(self, record: DocumentRecord, ctx: BatchContext) -> bool:
        ok = True
        try:
            self.sink.upsert(self.index, self.doc_type, record.id, record.fields, record.batch_timestamp)
            self.written += 1
        except Exception as e:
            ok = False
            self.failed += 1
            self.log.error(f"Failed to write document {record.id or '<auto>'} to {self.index}: {e}")

        ctx.processed_count += 1
        if ctx.processed_count % PROGRESS_EVERY == 0:
            self._report_progress(ctx)
        return ok

    def _report_progress(self, ctx: BatchContext) -> None:
        if ctx.row_count:
            percent = round(ctx.processed_count / ctx.row_count * 100)
            self.log.debug(f"Processed {ctx.processed_count} of {ctx.row_count} entries ({percent} percent done)")
        else:
            self.log.debug(f"Processed {ctx.processed_count} entries")
