# tests/integration/test_duckdb_adapter.py
import pytest

from tracenet.db.duckdb_adapter import DuckDBAdapter
from tracenet.models.schemas import (
    ConnectionRecord,
    DnsEvent,
    Endpoint,
    NetworkExtract,
    ProcessIdentity,
    RetransmissionRecord,
)


@pytest.fixture
def extract():
    result = NetworkExtract(capture="cap1")
    result.add_connection(ConnectionRecord(
        index=0,
        handle=0xFFFFA00012345678,
        local=Endpoint.parse("10.0.0.1:5000"),
        remote=Endpoint.parse("10.0.0.2:443"),
        opened=None,
        closed=None,
        process=None,
        bytes_sent=100,
        datagrams_sent=1,
    ))
    result.add_connection(ConnectionRecord(
        index=1,
        handle=2,
        local=Endpoint.parse("10.0.0.1:5001"),
        remote=Endpoint.parse("10.0.0.3:443"),
        opened=1.0,
        closed=2.0,
        process=ProcessIdentity(5, "app.exe", 0.0),
        last_template="Internet",
    ))
    result.add_retransmission(RetransmissionRecord(
        connection_index=0, timestamp=2.0, send_time=1.0, sequence_nr=10, num_bytes=100,
        is_receiver_detected=True,
    ))
    result.add_retransmission(RetransmissionRecord(
        connection_index=1, timestamp=3.0, send_time=1.5, sequence_nr=20, num_bytes=50,
    ))
    result.add_dns_event(DnsEvent(
        process=ProcessIdentity(5, "app.exe", 0.0), query="foo.example", result="::1",
        query_status=0, start=0.0, duration=0.25, server_list="8.8.8.8",
    ))
    return result


def test_store_and_summarize(tmp_path, extract):
    with DuckDBAdapter(str(tmp_path / "db" / "t.duckdb")) as db:
        counts = db.store_extract(extract)

        assert counts == {'tcp_connections': 2, 'tcp_retransmissions': 2, 'dns_events': 1}
        assert db.connection_count("cap1") == 2
        assert db.retransmission_summary("cap1") == {
            "receiver_detected": 1, "sender_detected": 1, "bytes": 150,
        }
        slow = db.slowest_dns_queries("cap1")
        assert list(slow["query"]) == ["foo.example"]


def test_store_replaces_same_capture(tmp_path, extract):
    with DuckDBAdapter(str(tmp_path / "t.duckdb")) as db:
        db.store_extract(extract)
        db.store_extract(extract)
        assert db.connection_count("cap1") == 2


def test_empty_extract(tmp_path):
    with DuckDBAdapter(str(tmp_path / "t.duckdb")) as db:
        counts = db.store_extract(NetworkExtract(), capture="empty")
        assert counts == {'tcp_connections': 0, 'tcp_retransmissions': 0, 'dns_events': 0}
        assert db.retransmission_summary("empty")["bytes"] == 0
