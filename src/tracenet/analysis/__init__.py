"""
Analysis package: connection resolution, aggregation, retransmission
detection and DNS query tracking.
"""

from .connection_resolver import Connection, ConnectionResolver
from .connection_aggregator import ConnectionAggregator, ConnectionTraffic
from .retransmission import RetransmissionDetector
from .tcp_extractor import TcpExtractor
from .dns_tracker import DnsClientExtractor, DnsLifecycleTracker, DnsQueryKey

__all__ = [
    'Connection',
    'ConnectionResolver',
    'ConnectionAggregator',
    'ConnectionTraffic',
    'RetransmissionDetector',
    'TcpExtractor',
    'DnsClientExtractor',
    'DnsLifecycleTracker',
    'DnsQueryKey'
]
