"""
Output Data Models for tracenet

Finished, immutable records handed to the output sink:
- ConnectionRecord: one TCP connection with byte/datagram totals
- RetransmissionRecord: receiver- or sender-detected retransmission
- DnsEvent: one completed DNS client query
- NetworkExtract: the result graph for one capture

These models are the contract between the correlation engine and storage.
"""

import ipaddress
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class ProcessIdentity:
    """Stable process identity: pid plus start time disambiguates pid reuse."""
    pid: int
    image_name: str
    start_time: Optional[float] = None

    def __str__(self):
        return f"{self.image_name}({self.pid})"


class Endpoint(BaseModel):
    """IP address and port of one side of a connection"""
    model_config = ConfigDict(frozen=True)

    address: str
    port: int = Field(0, ge=0, le=65535)

    @classmethod
    def parse(cls, text: str) -> "Endpoint":
        """
        Parse 'a.b.c.d:port', '[v6]:port' or a bare address.

        Raises:
            ValueError: text is empty or the port is not a number
        """
        text = text.strip()
        if not text:
            raise ValueError("empty endpoint")

        if text.startswith('['):
            host, _, rest = text[1:].partition(']')
            port = rest.lstrip(':')
        elif text.count(':') == 1:
            host, port = text.split(':')
        else:
            # bare IPv4 or bare IPv6
            host, port = text, ''

        if port and not port.isdigit():
            raise ValueError(f"bad port in endpoint '{text}'")
        return cls(address=host, port=int(port) if port else 0)

    def sort_key(self) -> Tuple:
        """Deterministic ordering: parsable IPs numerically, anything else by text afterwards."""
        try:
            ip = ipaddress.ip_address(self.address)
            return (0, ip.version, int(ip), self.port, '')
        except ValueError:
            return (1, 0, 0, self.port, self.address)

    def __str__(self):
        if ':' in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


class ConnectionRecord(BaseModel):
    """TCP connection summary"""
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., description="Position in NetworkExtract.connections")
    handle: int = Field(..., description="TCB handle")
    local: Endpoint
    remote: Endpoint
    opened: Optional[float] = Field(None, description="Open time, None if inferred")
    closed: Optional[float] = Field(None, description="Close time, None if open or unseen")
    process: Optional[ProcessIdentity] = None
    last_template: Optional[str] = None
    bytes_sent: int = 0
    datagrams_sent: int = 0
    bytes_received: int = 0
    datagrams_received: int = 0


class RetransmissionRecord(BaseModel):
    """Detected TCP retransmission"""
    model_config = ConfigDict(frozen=True)

    connection_index: int
    timestamp: float = Field(..., description="Detection time")
    send_time: float = Field(..., description="Original send / first seen time")
    sequence_nr: int
    num_bytes: int
    is_receiver_detected: bool = Field(
        False, description="True: duplicate received segment, False: retransmit signal"
    )


class DnsEvent(BaseModel):
    """Completed DNS client query"""
    model_config = ConfigDict(frozen=True)

    process: Optional[ProcessIdentity] = None
    query: str
    result: str
    query_status: int
    start: float
    duration: float
    server_list: str = ""
    timed_out: bool = False
    timed_out_server: Optional[str] = None
    adapters: Optional[str] = None


class NetworkExtract(BaseModel):
    """
    Result graph for one capture.

    Acts as the in-memory output sink: records are appended, never read back
    by the engine.
    """
    capture: Optional[str] = None
    connections: List[ConnectionRecord] = Field(default_factory=list)
    retransmissions: List[RetransmissionRecord] = Field(default_factory=list)
    dns_events: List[DnsEvent] = Field(default_factory=list)

    def next_connection_index(self) -> int:
        return len(self.connections)

    def add_connection(self, connection: ConnectionRecord) -> int:
        self.connections.append(connection)
        return connection.index

    def add_retransmission(self, retransmission: RetransmissionRecord) -> None:
        self.retransmissions.append(retransmission)

    def add_dns_event(self, event: DnsEvent) -> None:
        self.dns_events.append(event)

    def is_empty(self) -> bool:
        return not (self.connections or self.retransmissions or self.dns_events)
