"""
Network Correlation Engine

Runs the TCP and DNS extractors over the full event set of one capture and
returns the populated NetworkExtract.
"""

import logging
from typing import Optional, Sequence

from tracenet.analysis.dns_tracker import DnsClientExtractor
from tracenet.analysis.tcp_extractor import TcpExtractor
from tracenet.analysis.connection_resolver import ProcessResolver
from tracenet.config import Settings
from tracenet.models.events import TraceEvent
from tracenet.models.schemas import NetworkExtract

logger = logging.getLogger(__name__)


class NetworkCorrelationEngine:
    """
    Single-pass batch correlation for one capture.

    Use a new instance per capture.
    """

    def __init__(self, resolve_process: ProcessResolver, settings: Optional[Settings] = None):
        self.resolve_process = resolve_process
        self.settings = settings or Settings()
        self._used = False

    def run(self, events: Sequence[TraceEvent], capture: Optional[str] = None) -> NetworkExtract:
        """
        Args:
            events: Every event of the capture, in any order
            capture: Optional capture name stored with the results

        Returns:
            NetworkExtract with connections, retransmissions and DNS events
        """
        if self._used:
            raise RuntimeError("NetworkCorrelationEngine processes exactly one capture")
        self._used = True

        events = list(events)
        results = NetworkExtract(capture=capture)
        logger.info(f"Correlating {len(events)} events" + (f" of {capture}" if capture else ""))

        TcpExtractor(self.settings).extract(events, self.resolve_process, results)
        DnsClientExtractor(self.settings).extract(events, self.resolve_process, results)

        logger.info(
            f"Extracted {len(results.connections)} connections, "
            f"{len(results.retransmissions)} retransmissions, {len(results.dns_events)} DNS queries"
        )
        return results
