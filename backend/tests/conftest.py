import uuid
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.pool import NullPool

from sqlriver.connectors.base import BaseSink
from sqlriver.exceptions import DocumentWriteError, IndexAlreadyExists
from sqlriver.main import app
from sqlriver.schemas.river import SyncConfig


class FakeSink(BaseSink):
    """In-memory sink recording every call; delete-by-query keeps timestamp >= threshold."""

    def __init__(self, fail_on_ids=()):
        super().__init__({})
        self.indices = set()
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.fail_on_ids = set(fail_on_ids)

    def create_index(self, index: str, doc_type: str) -> None:
        self.calls.append(("create_index", index, doc_type))
        if index in self.indices:
            raise IndexAlreadyExists(index)
        self.indices.add(index)

    def put_mapping(self, index: str, doc_type: str, ignore_conflicts: bool = True) -> None:
        self.calls.append(("put_mapping", index, doc_type))

    def upsert(self, index: str, doc_type: str, doc_id: Optional[str], fields: Dict[str, Any], timestamp: int) -> str:
        self.calls.append(("upsert", index, doc_id))
        if doc_id in self.fail_on_ids:
            raise DocumentWriteError("rejected", doc_id=doc_id)
        doc_id = doc_id or uuid.uuid4().hex
        self.docs[doc_id] = {"type": doc_type, "timestamp": timestamp, "fields": dict(fields)}
        return doc_id

    def refresh(self, index: str) -> None:
        self.calls.append(("refresh", index))

    def delete_by_query(self, index: str, doc_type: str, threshold: int) -> int:
        self.calls.append(("delete_by_query", index, doc_type, threshold))
        stale = [
            doc_id for doc_id, doc in self.docs.items()
            if doc["type"] == doc_type and doc["timestamp"] < threshold
        ]
        for doc_id in stale:
            del self.docs[doc_id]
        return len(stale)

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


def make_source(path, rows: int = 0, offset: int = 1):
    """SQLite file with an ``items(uid, name, price)`` table of ``rows`` rows."""
    engine = create_engine(f"sqlite:///{path}", poolclass=NullPool)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE items (uid INTEGER PRIMARY KEY, name TEXT, price REAL)"))
        for i in range(offset, offset + rows):
            conn.execute(
                text("INSERT INTO items (uid, name, price) VALUES (:uid, :name, :price)"),
                {"uid": i, "name": f"item-{i}", "price": i * 1.5}
            )
    return engine


def river_settings(**overrides) -> Dict[str, Any]:
    mysql = {
        "hostname": "db.example.com",
        "database": "shop",
        "username": "river",
        "password": "secret",
        "query": "SELECT uid, name, price FROM items ORDER BY uid",
        "uniqueIdField": "uid",
    }
    mysql.update(overrides)
    return {"mysql": mysql}


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig.from_river_settings("items_river", river_settings())


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)
