"""
Data models for tracenet.
"""

from .schemas import (
    ConnectionRecord,
    DnsEvent,
    Endpoint,
    NetworkExtract,
    ProcessIdentity,
    RetransmissionRecord,
)
from .events import FieldError, TraceEvent

__all__ = [
    'ConnectionRecord',
    'DnsEvent',
    'Endpoint',
    'NetworkExtract',
    'ProcessIdentity',
    'RetransmissionRecord',
    'FieldError',
    'TraceEvent'
]
