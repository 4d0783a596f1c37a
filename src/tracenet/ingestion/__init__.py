"""
Ingestion package: trace source, process directory and event dispatch.
"""

from .event_ingestion import EventIngestion, IngestionStats, collect_tcp_events
from .process_directory import ProcessDirectory
from .trace_source import TraceFormatError, iter_trace, load_trace

__all__ = [
    'EventIngestion',
    'IngestionStats',
    'collect_tcp_events',
    'ProcessDirectory',
    'TraceFormatError',
    'iter_trace',
    'load_trace'
]
