import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from sqlriver.constants.abort_reasons import AbortReason
from sqlriver.exceptions import DocumentWriteError, ProvisioningError, PurgeFailure
from sqlriver.schemas.river import SyncConfig
from sqlriver.services.sync_service import CycleState, SyncCycle

from tests.conftest import FakeSink, make_source, river_settings


def _config(**overrides) -> SyncConfig:
    return SyncConfig.from_river_settings("items_river", river_settings(**overrides))


def _clock(*values):
    clock = MagicMock(side_effect=list(values))
    return clock


class TestSyncCycle:
    def test_three_rows_are_indexed_by_unique_id(self, tmp_path, fake_sink):
        """Scenario A."""
        engine = make_source(tmp_path / "src.db", rows=3)
        cycle = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000))

        result = cycle.run()

        assert result.aborted is False
        assert result.rows_read == 3
        assert result.rows_written == 3
        assert result.rows_failed == 0
        assert result.deleted_stale == 0
        assert result.purged is True
        assert sorted(fake_sink.docs) == ["1", "2", "3"]
        assert fake_sink.docs["2"]["fields"] == {"uid": "2", "name": "item-2", "price": "3.0"}
        assert fake_sink.call_names() == [
            "create_index", "put_mapping",
            "upsert", "upsert", "upsert",
            "refresh", "delete_by_query",
        ]
        assert fake_sink.calls[-1] == ("delete_by_query", "items_river", "data", 1000)
        assert cycle.state == CycleState.IDLE

    def test_zero_rows_aborts_before_any_write(self, tmp_path, fake_sink):
        """Scenario B."""
        fake_sink.upsert("items_river", "data", "keep-me", {}, 1)
        fake_sink.calls.clear()
        engine = make_source(tmp_path / "src.db", rows=0)

        result = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert result.aborted is True
        assert result.abort_reason == AbortReason.EMPTY_RESULT
        assert result.rows_read == 0
        assert fake_sink.call_names() == ["create_index", "put_mapping"]
        assert "keep-me" in fake_sink.docs

    def test_zero_rows_with_unknown_count_still_skips_purge(self, tmp_path, fake_sink):
        engine = make_source(tmp_path / "src.db", rows=0)

        result = SyncCycle(_config(countRows="false"), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert result.aborted is True
        assert result.abort_reason == AbortReason.EMPTY_RESULT
        assert "delete_by_query" not in fake_sink.call_names()

    def test_source_failure_aborts_without_writes(self, tmp_path, fake_sink):
        """Scenario C."""
        engine = create_engine(f"sqlite:///{tmp_path}/missing/src.db", poolclass=NullPool)

        result = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert result.aborted is True
        assert result.abort_reason == AbortReason.SOURCE_UNAVAILABLE
        assert "Source database unavailable" in result.abort_detail
        assert fake_sink.call_names() == ["create_index", "put_mapping"]

    def test_single_write_failure_does_not_abort_batch(self, tmp_path):
        """Scenario D."""
        sink = FakeSink(fail_on_ids={"42"})
        engine = make_source(tmp_path / "src.db", rows=150)

        result = SyncCycle(_config(), sink, engine=engine, clock=_clock(1000)).run()

        assert result.aborted is False
        assert result.rows_read == 150
        assert result.rows_written == 149
        assert result.rows_failed == 1
        assert result.purged is True
        assert ("delete_by_query", "items_river", "data", 1000) in sink.calls

    def test_stop_mid_cycle_skips_purge(self, tmp_path, fake_sink):
        """Scenario E."""
        engine = make_source(tmp_path / "src.db", rows=1000)
        cancel = threading.Event()
        upsert = fake_sink.upsert

        def upsert_then_stop(*args, **kwargs):
            doc_id = upsert(*args, **kwargs)
            if len(fake_sink.docs) == 10:
                cancel.set()
            return doc_id

        fake_sink.upsert = upsert_then_stop

        result = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000)).run(cancel)

        assert result.aborted is True
        assert result.abort_reason == AbortReason.CANCELLED
        assert result.rows_written == 10
        assert "delete_by_query" not in fake_sink.call_names()
        assert "10 of 1000" in result.abort_detail

    def test_batch_timestamp_is_captured_once_at_start(self, tmp_path, fake_sink):
        engine = make_source(tmp_path / "src.db", rows=5)
        clock = _clock(1000, 1005, 1010, 1015)

        result = SyncCycle(_config(), fake_sink, engine=engine, clock=clock).run()

        assert clock.call_count == 1
        assert result.batch_timestamp == 1000
        assert {doc["timestamp"] for doc in fake_sink.docs.values()} == {1000}

    def test_stale_documents_are_purged(self, tmp_path, fake_sink):
        fake_sink.upsert("items_river", "data", "99", {"uid": "99"}, 500)
        fake_sink.upsert("items_river", "data", "1", {"uid": "1"}, 500)
        engine = make_source(tmp_path / "src.db", rows=2)

        result = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert result.deleted_stale == 1
        assert sorted(fake_sink.docs) == ["1", "2"]

    def test_rerun_is_idempotent(self, tmp_path, fake_sink):
        engine = make_source(tmp_path / "src.db", rows=3)
        cycle = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000, 2000))

        first = cycle.run()
        ids_after_first = sorted(fake_sink.docs)
        second = cycle.run()

        assert first.aborted is False and second.aborted is False
        assert sorted(fake_sink.docs) == ids_after_first == ["1", "2", "3"]
        assert second.deleted_stale == 0
        assert {doc["timestamp"] for doc in fake_sink.docs.values()} == {2000}

    def test_without_unique_field_sink_assigns_ids(self, tmp_path, fake_sink):
        engine = make_source(tmp_path / "src.db", rows=3)

        SyncCycle(_config(uniqueIdField=None), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert len(fake_sink.docs) == 3
        assert not {"1", "2", "3"} & set(fake_sink.docs)

    def test_purge_disabled(self, tmp_path, fake_sink):
        engine = make_source(tmp_path / "src.db", rows=2)

        result = SyncCycle(_config(deleteOldEntries="false"), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert result.aborted is False
        assert result.purged is False
        assert "delete_by_query" not in fake_sink.call_names()

    def test_existing_index_is_not_an_error(self, tmp_path, fake_sink):
        fake_sink.indices.add("items_river")
        engine = make_source(tmp_path / "src.db", rows=1)

        result = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert result.aborted is False
        assert result.rows_written == 1

    def test_provisioning_failure_skips_cycle(self, fake_sink):
        fake_sink.create_index = MagicMock(side_effect=ProvisioningError("cluster red"))
        engine = MagicMock()

        result = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert result.aborted is True
        assert result.abort_reason == AbortReason.PROVISIONING_FAILED
        assert "cluster red" in result.abort_detail
        engine.connect.assert_not_called()
        assert fake_sink.docs == {}

    def test_unexpected_provisioning_error_is_cycle_scoped(self, fake_sink):
        fake_sink.put_mapping = MagicMock(side_effect=ConnectionError("reset by peer"))

        result = SyncCycle(_config(), fake_sink, engine=MagicMock(), clock=_clock(1000)).run()

        assert result.abort_reason == AbortReason.PROVISIONING_FAILED

    def test_purge_failure_keeps_written_documents(self, tmp_path, fake_sink):
        fake_sink.delete_by_query = MagicMock(side_effect=PurgeFailure("timeout"))
        engine = make_source(tmp_path / "src.db", rows=2)

        result = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert result.aborted is False
        assert result.purged is False
        assert result.rows_written == 2
        assert sorted(fake_sink.docs) == ["1", "2"]

    def test_unexpected_error_is_reported_not_raised(self, fake_sink):
        engine = MagicMock()
        engine.connect.side_effect = RuntimeError("driver crashed")

        result = SyncCycle(_config(), fake_sink, engine=engine, clock=_clock(1000)).run()

        assert result.aborted is True
        assert result.abort_reason == AbortReason.UNEXPECTED_ERROR
        assert result.finished_at is not None

    @pytest.mark.parametrize("failing_id", ["1", "3"])
    def test_write_errors_are_counted(self, tmp_path, failing_id):
        sink = FakeSink()
        upsert = sink.upsert

        def flaky(index, doc_type, doc_id, fields, timestamp):
            if doc_id == failing_id:
                raise DocumentWriteError("mapper_parsing_exception", doc_id=doc_id)
            return upsert(index, doc_type, doc_id, fields, timestamp)

        sink.upsert = flaky
        engine = make_source(tmp_path / "src.db", rows=3)

        result = SyncCycle(_config(), sink, engine=engine, clock=_clock(1000)).run()

        assert result.rows_failed == 1
        assert result.rows_written == 2
        assert failing_id not in sink.docs
