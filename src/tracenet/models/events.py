"""
Trace Event Models for tracenet

Input-side data structures:
- TraceEvent: one decoded trace record with typed field lookup
- typed TCP records (send/receive/retransmit/template/rundown/accept)

Typed records are built from TraceEvents by the ingestion layer. A missing or
wrongly typed field raises FieldError, which skips that one event.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from tracenet.models.schemas import Endpoint, ProcessIdentity

UINT32_MAX = 0xFFFFFFFF
UINT64_MAX = 0xFFFFFFFFFFFFFFFF


class FieldError(KeyError):
    """A trace event is missing an expected field or it has the wrong type."""

    def __init__(self, name: str, reason: str):
        super().__init__(name)
        self.name = name
        self.reason = reason

    def __str__(self):
        return f"field '{self.name}': {self.reason}"


@dataclass
class TraceEvent:
    """
    One decoded trace record.

    Attributes:
        provider: Provider identity (lower-case GUID string)
        event_id: Event type id within the provider
        timestamp: Seconds since capture epoch
        pid: Originating OS process id
        fields: Named payload fields, None when the payload was not decoded
    """
    provider: str
    event_id: int
    timestamp: float
    pid: int
    fields: Optional[Dict[str, Any]] = None

    def get_value(self, name: str) -> Any:
        """Untyped field value."""
        if self.fields is None or name not in self.fields:
            raise FieldError(name, "missing")
        return self.fields[name]

    def get_string(self, name: str) -> str:
        value = self.get_value(name)
        if not isinstance(value, str):
            raise FieldError(name, f"expected text, got {type(value).__name__}")
        return value

    def _get_unsigned(self, name: str, limit: int) -> int:
        value = self.get_value(name)
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise FieldError(name, f"expected unsigned integer, got {type(value).__name__}")
        if value < 0 or value > limit:
            raise FieldError(name, f"value {value} out of range")
        return value

    def get_uint32(self, name: str) -> int:
        return self._get_unsigned(name, UINT32_MAX)

    def get_uint64(self, name: str) -> int:
        return self._get_unsigned(name, UINT64_MAX)

    def get_handle(self, name: str) -> int:
        """Opaque pointer-sized handle. Accepts an integer or a hex string like '0xffffa0...'."""
        value = self.get_value(name)
        if isinstance(value, str):
            try:
                value = int(value, 16) if value.lower().startswith("0x") else int(value)
            except ValueError:
                raise FieldError(name, f"unparsable handle '{value}'")
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= UINT64_MAX:
            raise FieldError(name, "expected 64-bit handle")
        return value

    def get_endpoint(self, name: str) -> Endpoint:
        text = self.get_string(name)
        try:
            return Endpoint.parse(text)
        except ValueError as e:
            raise FieldError(name, str(e))


# ---------------------------------------------------------------------------
# TCP records
# ---------------------------------------------------------------------------

@dataclass
class ConnectRequest:
    """Connection opened by a connect event."""
    handle: int
    timestamp: float
    local: Endpoint
    remote: Endpoint
    process: Optional[ProcessIdentity]

    @classmethod
    def from_event(cls, ev: TraceEvent, process: Optional[ProcessIdentity]) -> "ConnectRequest":
        return cls(
            handle=ev.get_handle("Tcb"),
            timestamp=ev.timestamp,
            local=ev.get_endpoint("LocalAddress"),
            remote=ev.get_endpoint("RemoteAddress"),
            process=process,
        )


@dataclass
class CloseRequest:
    handle: int
    timestamp: float

    @classmethod
    def from_event(cls, ev: TraceEvent) -> "CloseRequest":
        return cls(handle=ev.get_handle("Tcb"), timestamp=ev.timestamp)


@dataclass(eq=False)
class SendEvent:
    """Outgoing data segment. `connection` is set once by the resolver."""
    handle: int
    timestamp: float
    sequence_nr: int
    num_bytes: int
    connection: Any = None

    @classmethod
    def from_event(cls, ev: TraceEvent) -> "SendEvent":
        return cls(
            handle=ev.get_handle("Tcb"),
            timestamp=ev.timestamp,
            sequence_nr=ev.get_uint32("SeqNo"),
            num_bytes=ev.get_uint32("BytesSent"),
        )


@dataclass(eq=False)
class ReceiveEvent:
    """Incoming data segment. `connection` is set once by the resolver."""
    handle: int
    timestamp: float
    sequence_nr: int
    num_bytes: int
    connection: Any = None

    @classmethod
    def from_event(cls, ev: TraceEvent) -> "ReceiveEvent":
        return cls(
            handle=ev.get_handle("Tcb"),
            timestamp=ev.timestamp,
            sequence_nr=ev.get_uint32("SeqNo"),
            num_bytes=ev.get_uint32("NumBytes"),
        )


@dataclass(eq=False)
class RetransmitSignal:
    """
    Sender-side retransmit indication.

    Produced by explicit retransmit events and by tail loss probes; both carry
    the oldest unacknowledged sequence number (SndUna).
    """
    handle: int
    timestamp: float
    snd_una: int
    connection: Any = None

    @classmethod
    def from_event(cls, ev: TraceEvent) -> "RetransmitSignal":
        return cls(handle=ev.get_handle("Tcb"), timestamp=ev.timestamp, snd_una=ev.get_uint32("SndUna"))

    @classmethod
    def from_tail_loss_probe(cls, ev: TraceEvent) -> "RetransmitSignal":
        # Same payload shape as an explicit retransmit
        return cls.from_event(ev)


@dataclass(eq=False)
class TemplateChangeEvent:
    handle: int
    timestamp: float
    template: str
    connection: Any = None

    @classmethod
    def from_event(cls, ev: TraceEvent) -> "TemplateChangeEvent":
        raw = ev.get_value("TemplateType")
        if isinstance(raw, bool) or not isinstance(raw, (str, int)):
            raise FieldError("TemplateType", "expected template name or id")
        return cls(handle=ev.get_handle("Tcb"), timestamp=ev.timestamp, template=str(raw))


@dataclass
class RundownRecord:
    """Connection that already existed when the capture started."""
    handle: int
    timestamp: float
    local: Endpoint
    remote: Endpoint
    pid: int

    @classmethod
    def from_event(cls, ev: TraceEvent) -> "RundownRecord":
        return cls(
            handle=ev.get_handle("Tcb"),
            timestamp=ev.timestamp,
            local=ev.get_endpoint("LocalAddress"),
            remote=ev.get_endpoint("RemoteAddress"),
            pid=ev.get_uint32("Pid"),
        )


@dataclass
class AcceptListenerRecord:
    """Completed accept on a listener; stands in for a missing connect event."""
    handle: int
    timestamp: float
    local: Endpoint
    remote: Endpoint
    pid: int

    @classmethod
    def from_event(cls, ev: TraceEvent) -> "AcceptListenerRecord":
        return cls(
            handle=ev.get_handle("Tcb"),
            timestamp=ev.timestamp,
            local=ev.get_endpoint("LocalAddress"),
            remote=ev.get_endpoint("RemoteAddress"),
            pid=ev.get_uint32("ProcessId"),
        )


@dataclass
class TcpEventLists:
    """Per-type ordered accumulation lists for one capture."""
    lifecycle: list = field(default_factory=list)  # ConnectRequest / CloseRequest in time order
    sends: list = field(default_factory=list)
    receives: list = field(default_factory=list)
    retransmits: list = field(default_factory=list)
    template_changes: list = field(default_factory=list)
    rundowns: list = field(default_factory=list)
    accept_completes: list = field(default_factory=list)
    summaries: int = 0

    def is_empty(self) -> bool:
        return not (self.lifecycle or self.sends or self.receives or self.retransmits
                    or self.template_changes or self.rundowns or self.accept_completes)
