"""
tracenet - reconstructs TCP connection lifecycles, retransmissions and DNS
query lifecycles from captured trace events.
"""

from .config import Settings, load_config
from .engine import NetworkCorrelationEngine

__version__ = "0.1.0"

__all__ = [
    'NetworkCorrelationEngine',
    'Settings',
    'load_config'
]
