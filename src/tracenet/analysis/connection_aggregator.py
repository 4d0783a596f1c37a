"""
Connection Aggregator

Groups resolved send/receive/template events by connection and computes
per-connection byte and datagram totals plus the last protocol template.
"""

import logging
from collections import defaultdict
from operator import attrgetter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from tracenet.analysis.connection_resolver import Connection
from tracenet.models.events import ReceiveEvent, SendEvent, TemplateChangeEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionTraffic:
    """Read-only view of one connection and its resolved events (time ordered)."""
    connection: Connection
    sends: Tuple[SendEvent, ...] = ()
    receives: Tuple[ReceiveEvent, ...] = ()
    template_changes: Tuple[TemplateChangeEvent, ...] = ()

    @property
    def bytes_sent(self) -> int:
        return sum(s.num_bytes for s in self.sends)

    @property
    def bytes_received(self) -> int:
        return sum(r.num_bytes for r in self.receives)

    @property
    def datagrams_sent(self) -> int:
        return len(self.sends)

    @property
    def datagrams_received(self) -> int:
        return len(self.receives)

    @property
    def last_template(self) -> Optional[str]:
        if not self.template_changes:
            return None
        # time ordered, ties in arrival order
        return self.template_changes[-1].template


def _group(events: Iterable) -> Dict[Connection, List]:
    grouped = defaultdict(list)
    for ev in events:
        if ev.connection is not None:
            grouped[ev.connection].append(ev)
    return grouped


class ConnectionAggregator:
    """
    Builds ConnectionTraffic views ordered by remote address.

    Events without a connection are left out. The ordering is stable: equal
    remote endpoints keep registration order.
    """

    def aggregate(
        self,
        connections: Sequence[Connection],
        sends: Iterable[SendEvent],
        receives: Iterable[ReceiveEvent],
        template_changes: Iterable[TemplateChangeEvent] = (),
    ) -> List[ConnectionTraffic]:
        sends_by = _group(sends)
        receives_by = _group(receives)
        templates_by = _group(template_changes)

        traffic = [
            ConnectionTraffic(
                connection=connection,
                sends=tuple(sorted(sends_by.get(connection, ()), key=attrgetter("timestamp"))),
                receives=tuple(sorted(receives_by.get(connection, ()), key=attrgetter("timestamp"))),
                template_changes=tuple(sorted(templates_by.get(connection, ()), key=attrgetter("timestamp"))),
            )
            for connection in connections
        ]
        traffic.sort(key=lambda t: t.connection.remote.sort_key())

        logger.info(f"Aggregated {len(traffic)} connections")
        return traffic
