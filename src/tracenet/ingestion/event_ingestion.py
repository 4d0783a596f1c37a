"""
Event Ingestion

Filters the raw events of one capture to one provider, orders them by time
and dispatches them by event id:
- provider must match
- originating process must be resolvable in the process directory
- field payload must be present

No correlation happens here. Ties on timestamp keep arrival order.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from tracenet.config import normalize_provider
from tracenet.models.events import (
    AcceptListenerRecord,
    CloseRequest,
    ConnectRequest,
    FieldError,
    ReceiveEvent,
    RetransmitSignal,
    RundownRecord,
    SendEvent,
    TcpEventLists,
    TemplateChangeEvent,
    TraceEvent,
)
from tracenet.models.schemas import ProcessIdentity

logger = logging.getLogger(__name__)

ProcessResolver = Callable[[int, float], Optional[ProcessIdentity]]
EventHandler = Callable[[TraceEvent], None]


@dataclass
class IngestionStats:
    received: int = 0
    accepted: int = 0
    dispatched: int = 0
    skipped: int = 0  # malformed payload
    ignored: int = 0  # no handler for event id


class EventIngestion:
    """Per-provider filter, stable time sort and type dispatch"""

    def __init__(self, provider: str, resolve_process: ProcessResolver):
        self.provider = normalize_provider(provider)
        self.resolve_process = resolve_process
        self.stats = IngestionStats()

    def is_valid(self, ev: TraceEvent) -> bool:
        return (
            ev.provider == self.provider
            and ev.fields is not None
            and self.resolve_process(ev.pid, ev.timestamp) is not None
        )

    def select(self, events: Iterable[TraceEvent]) -> List[TraceEvent]:
        """Valid events in ascending time order (stable)."""
        selected = []
        for ev in events:
            self.stats.received += 1
            if self.is_valid(ev):
                selected.append(ev)
        self.stats.accepted = len(selected)
        # list.sort is stable
        selected.sort(key=lambda ev: ev.timestamp)
        return selected

    def dispatch(self, events: Iterable[TraceEvent], handlers: Dict[int, EventHandler]) -> IngestionStats:
        """
        Run the handler registered for each event id.

        A handler raising FieldError skips only that event.
        """
        for ev in self.select(events):
            handler = handlers.get(ev.event_id)
            if handler is None:
                self.stats.ignored += 1
                continue
            try:
                handler(ev)
                self.stats.dispatched += 1
            except FieldError as e:
                self.stats.skipped += 1
                logger.debug(f"Skipped event {ev.event_id} at {ev.timestamp}: {e}")

        logger.debug(
            f"Provider {self.provider}: {self.stats.received} received, "
            f"{self.stats.accepted} accepted, {self.stats.skipped} malformed"
        )
        return self.stats


def collect_tcp_events(
    events: Iterable[TraceEvent],
    provider: str,
    event_ids: Dict[str, int],
    resolve_process: ProcessResolver,
) -> TcpEventLists:
    """
    Build the per-type TCP lists for one capture.

    Args:
        events: All events of the capture, any order
        provider: TCP/IP provider id
        event_ids: Event kind -> event id
        resolve_process: Process directory lookup

    Returns:
        TcpEventLists with every list in ascending time order
    """
    lists = TcpEventLists()

    def on_connect(ev):
        process = resolve_process(ev.pid, ev.timestamp)
        lists.lifecycle.append(ConnectRequest.from_event(ev, process))

    def on_summary(ev):
        lists.summaries += 1

    handlers = {
        event_ids['connect']: on_connect,
        event_ids['close']: lambda ev: lists.lifecycle.append(CloseRequest.from_event(ev)),
        event_ids['send']: lambda ev: lists.sends.append(SendEvent.from_event(ev)),
        event_ids['receive']: lambda ev: lists.receives.append(ReceiveEvent.from_event(ev)),
        event_ids['retransmit']: lambda ev: lists.retransmits.append(RetransmitSignal.from_event(ev)),
        event_ids['tail_loss_probe']: lambda ev: lists.retransmits.append(RetransmitSignal.from_tail_loss_probe(ev)),
        event_ids['template_changed']: lambda ev: lists.template_changes.append(TemplateChangeEvent.from_event(ev)),
        event_ids['connection_rundown']: lambda ev: lists.rundowns.append(RundownRecord.from_event(ev)),
        event_ids['accept_listener_complete']: lambda ev: lists.accept_completes.append(AcceptListenerRecord.from_event(ev)),
        event_ids['connection_summary']: on_summary,
    }

    stats = EventIngestion(provider, resolve_process).dispatch(events, handlers)
    logger.info(
        f"TCP ingestion: {stats.dispatched} events dispatched, {stats.skipped} skipped, "
        f"{len(lists.sends)} sends, {len(lists.receives)} receives, {len(lists.retransmits)} retransmit signals"
    )
    return lists
