# tests/conftest.py
import pytest

from tracenet.config import (
    DEFAULT_DNS_EVENTS,
    DEFAULT_TCP_EVENTS,
    DNS_CLIENT_PROVIDER,
    TCPIP_PROVIDER,
)
from tracenet.ingestion.process_directory import ProcessDirectory
from tracenet.models.events import TraceEvent
from tracenet.models.schemas import ProcessIdentity

APP = ProcessIdentity(5, "app.exe", 0.0)
BROWSER = ProcessIdentity(7, "browser.exe", 0.0)
SYSTEM = ProcessIdentity(4, "System", None)


@pytest.fixture
def directory() -> ProcessDirectory:
    """Process table with app.exe (5), browser.exe (7) and System (4), all running."""
    return ProcessDirectory([(APP, None), (BROWSER, None), (SYSTEM, None)])


@pytest.fixture
def tcp_event():
    """Factory: tcp_event('send', t, Tcb=1, SeqNo=..., BytesSent=...)"""
    def make(kind, timestamp, pid=5, **fields):
        return TraceEvent(TCPIP_PROVIDER, DEFAULT_TCP_EVENTS[kind], timestamp, pid, fields)
    return make


@pytest.fixture
def dns_event():
    """Factory: dns_event('query_start', t, QueryName=..., QueryType=28)"""
    def make(kind, timestamp, pid=5, **fields):
        return TraceEvent(DNS_CLIENT_PROVIDER, DEFAULT_DNS_EVENTS[kind], timestamp, pid, fields)
    return make


@pytest.fixture
def connect(tcp_event):
    """Factory for connect events."""
    def make(timestamp, tcb, remote="10.0.0.2:443", local="10.0.0.1:50000", pid=5):
        return tcp_event("connect", timestamp, pid=pid, Tcb=tcb, LocalAddress=local, RemoteAddress=remote)
    return make


@pytest.fixture
def send(tcp_event):
    def make(timestamp, tcb, seq, size):
        return tcp_event("send", timestamp, Tcb=tcb, SeqNo=seq, BytesSent=size)
    return make


@pytest.fixture
def receive(tcp_event):
    def make(timestamp, tcb, seq, size):
        return tcp_event("receive", timestamp, Tcb=tcb, SeqNo=seq, NumBytes=size)
    return make
