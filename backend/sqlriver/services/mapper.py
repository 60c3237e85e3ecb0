from typing import Any, Dict, Optional

from sqlriver.connectors.base import DocumentRecord
from sqlriver.schemas.sync import BatchContext

def coerce_value(value: Any) -> Optional[str]:
    """String representation of a column value, as the source driver would render it."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)

class DocumentMapper:
    """
    Maps source rows to document records.
    Every value is coerced to its string form; types are not preserved.
    """

    def __init__(self, unique_id_field: Optional[str] = None):
        self.unique_id_field = unique_id_field

    def map_row(self, row: Dict[str, Any], ctx: BatchContext) -> DocumentRecord:
        fields = {str(column): coerce_value(value) for column, value in row.items()}
        doc_id = None
        if self.unique_id_field:
            # Missing id column: the sink assigns one, so the upsert becomes an insert
            doc_id = fields.get(self.unique_id_field)
        return DocumentRecord(id=doc_id, fields=fields, batch_timestamp=ctx.timestamp)
