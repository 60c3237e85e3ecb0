from enum import Enum
from typing import Dict

class AbortReason(Enum):
    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"
    EMPTY_RESULT = "EMPTY_RESULT"
    CANCELLED = "CANCELLED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

def explain_reason(code: AbortReason, context: Dict) -> str:
    templates = {
        AbortReason.PROVISIONING_FAILED: "Could not provision index {index} for type {doc_type}: {error_detail}.",
        AbortReason.SOURCE_UNAVAILABLE: "Source database unavailable: {error_detail}.",
        AbortReason.EMPTY_RESULT: "Got 0 results from database. Aborting before removing still valid entries from {index}.",
        AbortReason.CANCELLED: "River stopped after {processed} of {total} rows; stale entries were not purged.",
        AbortReason.UNEXPECTED_ERROR: "Unexpected error during sync: {error_detail}.",
    }
    template = templates.get(code, templates[AbortReason.UNEXPECTED_ERROR])
    return template.format_map(_Defaults(context))


class _Defaults(dict):
    def __missing__(self, key):
        return "unknown"
