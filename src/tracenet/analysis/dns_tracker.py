"""
DNS Lifecycle Tracker

Merges the fragmented DNS client events of one query into one DnsEvent:
- start: (query, process) state created, or overwritten ("last query wins")
- per-server attempt / adapter / timeout: looked up by query text for any
  process; the most recently started query with that text takes them
- complete: (query, process) state read, duration computed, DnsEvent emitted

IPv4 address (A record) queries are ignored at start and completion.
A completed state is not removed: a second completion for the same key
without a new start reuses it.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from tracenet.config import Settings
from tracenet.ingestion.event_ingestion import EventIngestion, ProcessResolver
from tracenet.models.events import TraceEvent
from tracenet.models.schemas import DnsEvent, NetworkExtract, ProcessIdentity

logger = logging.getLogger(__name__)

DNS_TYPE_A = 1
SERVER_SEPARATOR = ";"
ADAPTER_SEPARATOR = ";"


@dataclass(frozen=True)
class DnsQueryKey:
    """Query text plus owning process; process None matches any process."""
    query: str
    process: Optional[ProcessIdentity] = None

    @property
    def is_wildcard(self) -> bool:
        return self.process is None


@dataclass
class QueryState:
    """In-flight state of one query"""
    start: float
    process: Optional[ProcessIdentity]
    duration: Optional[float] = None
    servers: List[str] = field(default_factory=list)
    timed_out: bool = False
    timed_out_server: Optional[str] = None
    adapters: Optional[str] = None


def is_tracked_query_type(query_type: int) -> bool:
    # A queries mostly fail or duplicate the AAAA query issued for the same name
    return query_type != DNS_TYPE_A


class DnsLifecycleTracker:
    """Per-key state machine: absent -> in-flight -> completed."""

    def __init__(self):
        self.states: Dict[DnsQueryKey, QueryState] = {}

    def lookup(self, key: DnsQueryKey) -> Optional[QueryState]:
        """
        Exact lookup for process-scoped keys. A wildcard key returns the state
        with the latest start among those with the same query text.
        """
        if not key.is_wildcard:
            return self.states.get(key)
        found = None
        for stored_key, state in self.states.items():
            if stored_key.query == key.query and (found is None or state.start >= found.start):
                found = state
        return found

    def start(self, query: str, process: ProcessIdentity, query_type: int, timestamp: float) -> None:
        if not is_tracked_query_type(query_type):
            return
        self.states[DnsQueryKey(query, process)] = QueryState(start=timestamp, process=process)

    def server_attempt(self, query: str, server: str) -> None:
        state = self.lookup(DnsQueryKey(query))
        if state is not None:
            state.servers.append(server)

    def adapter_observed(self, query: str, adapter_name: str) -> None:
        state = self.lookup(DnsQueryKey(query))
        if state is None:
            return
        adapter_name = adapter_name.replace(ADAPTER_SEPARATOR, "_")
        if state.adapters:
            state.adapters += ADAPTER_SEPARATOR + adapter_name
        else:
            state.adapters = adapter_name

    def timeout(self, query: str, server: str) -> None:
        state = self.lookup(DnsQueryKey(query))
        if state is not None:
            state.timed_out = True
            state.timed_out_server = server

    def complete(
        self,
        query: str,
        process: ProcessIdentity,
        query_type: int,
        timestamp: float,
        result: str,
        status: int,
    ) -> Optional[DnsEvent]:
        """
        Finish a query.

        Returns:
            DnsEvent snapshot, or None if filtered or no matching start
        """
        if not is_tracked_query_type(query_type):
            return None
        state = self.lookup(DnsQueryKey(query, process))
        if state is None:
            return None

        state.duration = timestamp - state.start
        return DnsEvent(
            process=state.process,
            query=query,
            result=result,
            query_status=status,
            start=state.start,
            duration=state.duration,
            server_list=SERVER_SEPARATOR.join(state.servers),
            timed_out=state.timed_out,
            timed_out_server=state.timed_out_server,
            adapters=state.adapters,
        )


class DnsClientExtractor:
    """Feeds DNS client trace events through a DnsLifecycleTracker."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def extract(
        self,
        events: Iterable[TraceEvent],
        resolve_process: ProcessResolver,
        results: NetworkExtract,
    ) -> NetworkExtract:
        start_time = time.perf_counter()
        tracker = DnsLifecycleTracker()
        ids = self.settings.dns_events
        emitted = 0

        def on_start(ev):
            tracker.start(
                ev.get_string("QueryName"),
                resolve_process(ev.pid, ev.timestamp),
                ev.get_uint32("QueryType"),
                ev.timestamp,
            )

        def on_complete(ev):
            nonlocal emitted
            dns = tracker.complete(
                ev.get_string("QueryName"),
                resolve_process(ev.pid, ev.timestamp),
                ev.get_uint32("QueryType"),
                ev.timestamp,
                ev.get_string("QueryResults"),
                ev.get_uint32("QueryStatus"),
            )
            if dns is not None:
                results.add_dns_event(dns)
                emitted += 1

        handlers = {
            ids['query_start']: on_start,
            ids['query_complete']: on_complete,
            ids['server_attempt']: lambda ev: tracker.server_attempt(
                ev.get_string("QueryName"), ev.get_string("DnsServerIpAddress")),
            ids['adapter_query_start']: lambda ev: tracker.adapter_observed(
                ev.get_string("QueryName"), ev.get_string("AdapterName")),
            ids['server_timeout']: lambda ev: tracker.timeout(
                ev.get_string("QueryName"), str(ev.get_value("Address"))),
        }

        stats = EventIngestion(self.settings.dns_provider, resolve_process).dispatch(events, handlers)
        if stats.dispatched == 0:
            logger.info("No DNS client events in capture, skipping DNS extraction")
            return results

        elapsed = time.perf_counter() - start_time
        logger.info(
            f"DNS extraction: {emitted} queries from {stats.dispatched} events "
            f"({stats.skipped} skipped) in {elapsed:.2f}s"
        )
        return results
