import httpx
import logging
from typing import Dict, Any, Optional
from urllib.parse import quote

from sqlriver.connectors.base import BaseSink
from sqlriver.exceptions import DocumentWriteError, IndexAlreadyExists, ProvisioningError, PurgeFailure
from sqlriver.utils import log as _trace  # noqa: F401  installs Logger.trace

log = logging.getLogger(__name__)

# Current Elasticsearch has neither mapping types nor a _timestamp field, so
# both are stored as reserved fields on every document.
TYPE_FIELD = "river_type"
TIMESTAMP_FIELD = "river_timestamp"

def timestamp_mapping() -> Dict[str, Any]:
    return {
        "properties": {
            TYPE_FIELD: {"type": "keyword"},
            TIMESTAMP_FIELD: {"type": "long"},
        }
    }

def _error_type(response: httpx.Response) -> Optional[str]:
    """Extracts the Elasticsearch error type (e.g. resource_already_exists_exception)."""
    try:
        error = response.json().get("error")
    except ValueError:
        return None
    if isinstance(error, dict):
        return error.get("type")
    return None

class ElasticsearchConnector(BaseSink):
    """
    Document sink backed by the Elasticsearch REST API.

    Writes are single-document index requests; the purge is a
    delete-by-query on the reserved type and timestamp fields.
    """

    def __init__(self, config: Dict[str, Any], client: Optional[httpx.Client] = None):
        super().__init__(config)
        self.base_url = self.config["base_url"].strip().rstrip("/")
        auth = None
        if self.config.get("username"):
            auth = (self.config["username"], self.config.get("password") or "")

        self.client = client or httpx.Client(
            base_url=self.base_url,
            auth=auth,
            timeout=self.config.get("timeout", 30.0),
            verify=self.config.get("verify", True)
        )
        self.headers = {"Content-Type": "application/json"}
        log.info(f"Elasticsearch connector initialized with base URL: {self.base_url}")

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """Helper to make requests to Elasticsearch. Raises httpx errors after logging them."""
        if not path.startswith("/"):
            path = f"/{path}"
        try:
            log.trace(f"Elasticsearch {method} {path} params: {kwargs.get('params', 'none')}")
            response = self.client.request(method, path, headers=self.headers, **kwargs)
            log.trace(f"Elasticsearch response for {path}: {response.status_code}")
            response.raise_for_status()
            return response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            log.debug(f"HTTP error for {e.request.url}: {e.response.status_code} - {e.response.text}")
            raise
        except httpx.RequestError as e:
            log.error(f"Request error for {e.request.url}: {e}")
            raise

    def create_index(self, index: str, doc_type: str) -> None:
        try:
            self._request("PUT", f"/{quote(index)}", json={"mappings": timestamp_mapping()})
            log.info(f"Created Index {index} with timestamp mapping for {doc_type}")
        except httpx.HTTPStatusError as e:
            if _error_type(e.response) == "resource_already_exists_exception":
                raise IndexAlreadyExists(f"Index {index} already exists")
            raise ProvisioningError(f"Failed to create index {index}: HTTP {e.response.status_code} - {e.response.text}")
        except httpx.RequestError as e:
            raise ProvisioningError(f"Failed to create index {index}: {e}")

    def put_mapping(self, index: str, doc_type: str, ignore_conflicts: bool = True) -> None:
        try:
            self._request("PUT", f"/{quote(index)}/_mapping", json=timestamp_mapping())
        except httpx.HTTPStatusError as e:
            if ignore_conflicts and _error_type(e.response) == "illegal_argument_exception":
                log.debug(f"Mapping already exists for index {index} and type {doc_type}")
                return
            raise ProvisioningError(f"Failed to put mapping on {index}: HTTP {e.response.status_code} - {e.response.text}")
        except httpx.RequestError as e:
            raise ProvisioningError(f"Failed to put mapping on {index}: {e}")

    def upsert(self, index: str, doc_type: str, doc_id: Optional[str], fields: Dict[str, Any], timestamp: int) -> str:
        body = dict(fields)
        body[TYPE_FIELD] = doc_type
        body[TIMESTAMP_FIELD] = timestamp
        try:
            if doc_id is None:
                result = self._request("POST", f"/{quote(index)}/_doc", json=body)
            else:
                result = self._request("PUT", f"/{quote(index)}/_doc/{quote(doc_id, safe='')}", json=body)
        except httpx.HTTPStatusError as e:
            raise DocumentWriteError(f"HTTP {e.response.status_code} - {e.response.text}", doc_id=doc_id)
        except httpx.RequestError as e:
            raise DocumentWriteError(str(e), doc_id=doc_id)
        return result.get("_id", doc_id)

    def refresh(self, index: str) -> None:
        self._request("POST", f"/{quote(index)}/_refresh")

    def delete_by_query(self, index: str, doc_type: str, threshold: int) -> int:
        query = {
            "query": {
                "bool": {
                    "filter": [
                        {"term": {TYPE_FIELD: doc_type}},
                        {"range": {TIMESTAMP_FIELD: {"lt": threshold}}},
                    ]
                }
            }
        }
        try:
            result = self._request(
                "POST",
                f"/{quote(index)}/_delete_by_query",
                params={"conflicts": "proceed", "refresh": "true"},
                json=query
            )
        except httpx.HTTPError as e:
            raise PurgeFailure(f"Delete by query on {index} failed: {e}")
        failures = result.get("failures") or []
        if failures:
            log.warning(f"Delete by query on {index} reported {len(failures)} failures: {failures[:3]}")
        return int(result.get("deleted", 0))

    def close(self) -> None:
        self.client.close()
