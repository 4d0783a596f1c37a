# tests/integration/test_engine.py
import pytest

from tracenet.engine import NetworkCorrelationEngine

AAAA = 28


def _run(directory, events):
    return NetworkCorrelationEngine(directory).run(events, capture="test")


def test_byte_totals_match_resolved_events(directory, connect, send, receive):
    events = [
        connect(0.0, 1, remote="10.0.0.2:443"),
        send(1.0, 1, 0, 100),
        send(1.1, 1, 100, 250),
        receive(1.2, 1, 0, 1000),
        receive(1.3, 1, 1000, 24),
        send(1.4, 42, 0, 5000),  # unknown handle, excluded
    ]
    result = _run(directory, events)

    assert len(result.connections) == 1
    conn = result.connections[0]
    assert conn.bytes_sent == 350
    assert conn.datagrams_sent == 2
    assert conn.bytes_received == 1024
    assert conn.datagrams_received == 2
    assert conn.opened == 0.0
    assert conn.process.image_name == "app.exe"


def test_receiver_retransmission_within_three_seconds(directory, connect, receive):
    result = _run(directory, [connect(0.0, 1), receive(1.0, 1, 500, 1460), receive(2.5, 1, 500, 1460)])

    assert len(result.retransmissions) == 1
    rec = result.retransmissions[0]
    assert rec.is_receiver_detected
    assert rec.send_time == 1.0
    assert rec.connection_index == 0


def test_receiver_retransmission_outside_window(directory, connect, receive):
    result = _run(directory, [connect(0.0, 1), receive(1.0, 1, 500, 1460), receive(5.0, 1, 500, 1460)])
    assert result.retransmissions == []


def test_handle_reuse(directory, tcp_event, connect, send):
    events = [
        connect(0.0, 1, remote="10.0.0.2:443"),
        tcp_event("close", 5.0, Tcb=1),
        connect(8.0, 1, remote="10.0.0.3:443"),
        send(6.0, 1, 0, 111),   # between close and reopen
        send(9.0, 1, 0, 222),
    ]
    result = _run(directory, events)

    first, second = result.connections
    assert first.remote.address == "10.0.0.2"
    assert first.closed == 5.0
    assert first.bytes_sent == 0
    assert second.remote.address == "10.0.0.3"
    assert second.bytes_sent == 222


def test_rundown_only_connection(directory, tcp_event, send, receive):
    events = [
        tcp_event("connection_rundown", 0.0, pid=4, Tcb=7, LocalAddress="10.0.0.1:5000",
                  RemoteAddress="10.0.0.5:80", Pid=5),
        send(1.0, 7, 0, 10),
        receive(2.0, 7, 0, 20),
        send(3.0, 7, 10, 30),
    ]
    result = _run(directory, events)

    assert len(result.connections) == 1
    conn = result.connections[0]
    assert conn.opened is None
    assert conn.closed is None
    assert conn.process.image_name == "app.exe"
    assert conn.bytes_sent == 40
    assert conn.datagrams_sent == 2
    assert conn.bytes_received == 20


def test_accept_listener_connection(directory, tcp_event, receive):
    events = [
        tcp_event("accept_listener_complete", 1.0, Tcb=9, LocalAddress="10.0.0.1:80",
                  RemoteAddress="10.0.0.7:50000", ProcessId=7),
        receive(2.0, 9, 0, 300),
    ]
    result = _run(directory, events)
    conn = result.connections[0]
    assert conn.opened == 1.0
    assert conn.process.image_name == "browser.exe"
    assert conn.bytes_received == 300


def _sender_records(directory, tcp_event, connect, send, kind):
    events = [
        connect(0.0, 1),
        send(1.0, 1, 1000, 1460),
        send(1.1, 1, 2460, 1460),
        tcp_event(kind, 1.5, Tcb=1, SndUna=2460),
    ]
    return _run(directory, events).retransmissions


def test_tail_loss_probe_equals_explicit_retransmit(directory, tcp_event, connect, send):
    explicit = _sender_records(directory, tcp_event, connect, send, "retransmit")
    probe = _sender_records(directory, tcp_event, connect, send, "tail_loss_probe")

    assert len(explicit) == 1
    assert explicit == probe
    rec = explicit[0]
    assert not rec.is_receiver_detected
    assert rec.send_time == 1.1
    assert rec.num_bytes == 1460


def test_retransmit_signal_can_synthesize_connection(directory, tcp_event, send):
    events = [
        tcp_event("connection_rundown", 0.0, Tcb=3, LocalAddress="10.0.0.1:1",
                  RemoteAddress="10.0.0.9:9", Pid=5),
        tcp_event("retransmit", 0.5, Tcb=3, SndUna=0),
    ]
    result = _run(directory, events)
    assert len(result.connections) == 1
    assert result.retransmissions == []


def test_connections_ordered_by_remote_address(directory, connect):
    result = _run(directory, [
        connect(0.0, 1, remote="192.168.0.1:80"),
        connect(0.0, 2, remote="10.0.0.1:80"),
    ])
    assert [c.remote.address for c in result.connections] == ["10.0.0.1", "192.168.0.1"]
    assert [c.index for c in result.connections] == [0, 1]


def test_last_template(directory, tcp_event, connect):
    result = _run(directory, [
        connect(0.0, 1),
        tcp_event("template_changed", 1.0, Tcb=1, TemplateType="Datacenter"),
        tcp_event("template_changed", 2.0, Tcb=1, TemplateType="Internet"),
    ])
    assert result.connections[0].last_template == "Internet"


def test_dns_query_lifecycle(directory, dns_event):
    events = [
        dns_event("query_start", 0.0, QueryName="foo.example", QueryType=AAAA),
        dns_event("server_attempt", 0.01, pid=4, QueryName="foo.example", DnsServerIpAddress="8.8.8.8"),
        dns_event("adapter_query_start", 0.02, pid=4, QueryName="foo.example", AdapterName="Ethernet"),
        dns_event("query_complete", 0.1, QueryName="foo.example", QueryType=AAAA,
                  QueryResults="1.2.3.4", QueryStatus=0),
    ]
    result = _run(directory, events)

    assert len(result.dns_events) == 1
    dns = result.dns_events[0]
    assert dns.duration == pytest.approx(0.1)
    assert dns.result == "1.2.3.4"
    assert dns.server_list == "8.8.8.8"
    assert dns.adapters == "Ethernet"
    assert dns.process.pid == 5


def test_dns_ipv4_queries_never_emitted(directory, dns_event):
    events = [
        dns_event("query_start", 0.0, QueryName="foo.example", QueryType=1),
        dns_event("query_complete", 0.1, QueryName="foo.example", QueryType=1,
                  QueryResults="1.2.3.4", QueryStatus=0),
    ]
    assert _run(directory, events).dns_events == []


def test_malformed_dns_completion_is_skipped(directory, dns_event):
    events = [
        dns_event("query_start", 0.0, QueryName="foo.example", QueryType=AAAA),
        dns_event("query_complete", 0.1, QueryName="foo.example", QueryType=AAAA),
    ]
    assert _run(directory, events).dns_events == []


def test_empty_capture_is_a_no_op(directory):
    result = _run(directory, [])
    assert result.is_empty()


def test_engine_processes_one_capture(directory):
    engine = NetworkCorrelationEngine(directory)
    engine.run([])
    with pytest.raises(RuntimeError):
        engine.run([])


def test_dns_sub_events_follow_the_live_query(directory, dns_event):
    events = [
        dns_event("query_start", 0.0, QueryName="foo.example", QueryType=AAAA),
        dns_event("query_complete", 0.1, QueryName="foo.example", QueryType=AAAA,
                  QueryResults="::1", QueryStatus=0),
        dns_event("query_start", 50.0, pid=7, QueryName="foo.example", QueryType=AAAA),
        dns_event("server_attempt", 50.01, pid=4, QueryName="foo.example", DnsServerIpAddress="8.8.8.8"),
        dns_event("server_timeout", 50.5, pid=4, QueryName="foo.example", Address="8.8.8.8"),
        dns_event("query_complete", 51.0, pid=7, QueryName="foo.example", QueryType=AAAA,
                  QueryResults="", QueryStatus=1460),
    ]
    app, browser = _run(directory, events).dns_events

    assert app.server_list == ""
    assert browser.process.image_name == "browser.exe"
    assert browser.server_list == "8.8.8.8"
    assert browser.timed_out
    assert browser.timed_out_server == "8.8.8.8"
