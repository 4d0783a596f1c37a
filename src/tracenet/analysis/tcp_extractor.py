"""
TCP Extractor

Pipeline for one capture:
1. ingestion: filter, time sort, per-type lists
2. resolution: connection for every send/receive/template/retransmit event
3. aggregation: per-connection totals, ordered by remote address
4. retransmission detection (receiver side + sender side)
5. records handed to the output sink
"""

import logging
import time
from typing import Iterable, Optional

from tracenet.analysis.connection_aggregator import ConnectionAggregator
from tracenet.analysis.connection_resolver import ConnectionResolver, ProcessResolver
from tracenet.analysis.retransmission import RetransmissionDetector
from tracenet.config import Settings
from tracenet.ingestion.event_ingestion import collect_tcp_events
from tracenet.models.events import TcpEventLists, TraceEvent
from tracenet.models.schemas import ConnectionRecord, NetworkExtract

logger = logging.getLogger(__name__)


class TcpExtractor:
    """
    Reconstructs TCP connections and retransmissions.

    One instance per capture; nothing is kept between calls to extract().
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.aggregator = ConnectionAggregator()
        self.detector = RetransmissionDetector()

    def extract(
        self,
        events: Iterable[TraceEvent],
        resolve_process: ProcessResolver,
        results: NetworkExtract,
    ) -> NetworkExtract:
        """
        Add connections and retransmissions of one capture to `results`.

        A capture without TCP events leaves `results` untouched.
        """
        start_time = time.perf_counter()

        lists = collect_tcp_events(
            events, self.settings.tcp_provider, self.settings.tcp_events, resolve_process
        )
        if lists.is_empty():
            logger.info("No TCP events in capture, skipping TCP extraction")
            return results

        self.correlate(lists, resolve_process, results)

        elapsed = time.perf_counter() - start_time
        logger.info(f"TCP extraction complete in {elapsed:.2f}s")
        return results

    def correlate(
        self,
        lists: TcpEventLists,
        resolve_process: ProcessResolver,
        results: NetworkExtract,
    ) -> NetworkExtract:
        """Resolve, aggregate and detect over already ingested lists."""
        resolver = ConnectionResolver(resolve_process, lists.rundowns, lists.accept_completes)
        resolver.apply_lifecycle(lists.lifecycle)

        # Order matters: fallback synthesis during sends is visible to receives etc.
        dropped = 0
        dropped += resolver.resolve_all(lists.sends)
        dropped += resolver.resolve_all(lists.receives)
        dropped += resolver.resolve_all(lists.template_changes)
        dropped += resolver.resolve_all(lists.retransmits)
        if dropped:
            logger.info(f"{dropped} TCP events without a connection were excluded")
        logger.info(
            f"Resolved {resolver.stats.resolved} events to {len(resolver.connections)} connections "
            f"({resolver.stats.from_rundown} from rundown, {resolver.stats.from_accept} from accept)"
        )

        traffic = self.aggregator.aggregate(
            resolver.connections, lists.sends, lists.receives, lists.template_changes
        )

        index_by_connection = {}
        for item in traffic:
            conn = item.connection
            index = results.add_connection(ConnectionRecord(
                index=results.next_connection_index(),
                handle=conn.handle,
                local=conn.local,
                remote=conn.remote,
                opened=conn.opened,
                closed=conn.closed,
                process=conn.process,
                last_template=item.last_template,
                bytes_sent=item.bytes_sent,
                datagrams_sent=item.datagrams_sent,
                bytes_received=item.bytes_received,
                datagrams_received=item.datagrams_received,
            ))
            index_by_connection[conn] = index

        for record in self.detector.detect(traffic, index_by_connection, lists.retransmits):
            results.add_retransmission(record)

        return results
