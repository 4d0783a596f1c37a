"""
Connection Resolver

TCB handles are reused by the OS for non-overlapping connections, so a
connection is identified by (handle, validity window). An event is resolved
to a connection by trying, in order:

1. registered connections under the handle whose [open, close) contains t
   (first registered match wins)
2. a rundown record for the handle -> synthesize open=None, close=None
3. an accept-listener completion for the handle -> synthesize open=completion, close=None

Unresolved events get no connection and drop out of all later steps.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from tracenet.models.events import (
    AcceptListenerRecord,
    CloseRequest,
    ConnectRequest,
    RundownRecord,
)
from tracenet.models.schemas import Endpoint, ProcessIdentity

logger = logging.getLogger(__name__)

ProcessResolver = Callable[[int, float], Optional[ProcessIdentity]]


@dataclass(eq=False)
class Connection:
    """
    Mutable connection state during resolution.

    Identity is the object itself; two connections with equal fields are
    still different connections.
    """
    handle: int
    local: Endpoint
    remote: Endpoint
    opened: Optional[float]
    closed: Optional[float]
    process: Optional[ProcessIdentity]

    def is_matching(self, handle: int, timestamp: float) -> bool:
        """True if this connection owns `handle` at `timestamp`; None bounds are open."""
        if handle != self.handle:
            return False
        if self.opened is not None and timestamp < self.opened:
            return False
        if self.closed is not None and timestamp >= self.closed:
            return False
        return True


@dataclass
class ResolverStats:
    resolved: int = 0
    unresolved: int = 0
    from_rundown: int = 0
    from_accept: int = 0


class ConnectionResolver:
    """
    Registry of connections plus the handle -> connections index.

    The registry list is the source of truth; the index is only ever
    extended through register(), so both stay in registration order.
    """

    def __init__(
        self,
        resolve_process: ProcessResolver,
        rundowns: Sequence[RundownRecord] = (),
        accept_completes: Sequence[AcceptListenerRecord] = (),
    ):
        self.resolve_process = resolve_process
        self.rundowns = list(rundowns)
        self.accept_completes = list(accept_completes)
        self.connections: List[Connection] = []
        self._by_handle: Dict[int, List[Connection]] = defaultdict(list)
        self.stats = ResolverStats()
        # accept record id -> connection synthesized from it
        self._from_accept: Dict[int, Connection] = {}
        self._strategies = [
            self._match_registered,
            self._synthesize_from_rundown,
            self._synthesize_from_accept,
        ]

    def register(self, connection: Connection) -> Connection:
        self.connections.append(connection)
        self._by_handle[connection.handle].append(connection)
        return connection

    def connections_for(self, handle: int) -> Sequence[Connection]:
        """Connections registered under `handle`, in registration order."""
        return self._by_handle.get(handle, ())

    def apply_lifecycle(self, lifecycle: Iterable) -> None:
        """
        Replay connect/close records in time order.

        A close applies to the connection of that handle with the latest open
        time among those registered so far (unknown open sorts last).
        """
        for item in lifecycle:
            if isinstance(item, ConnectRequest):
                self.register(Connection(
                    handle=item.handle,
                    local=item.local,
                    remote=item.remote,
                    opened=item.timestamp,
                    closed=None,
                    process=item.process,
                ))
            elif isinstance(item, CloseRequest):
                self._close(item)

    def _close(self, close: CloseRequest) -> None:
        candidates = self.connections_for(close.handle)
        if not candidates:
            logger.debug(f"Close for unknown handle {close.handle:#x} at {close.timestamp}")
            return
        with_open = [c for c in candidates if c.opened is not None]
        # max() keeps the first registered among equal open times
        target = max(with_open, key=lambda c: c.opened) if with_open else candidates[0]
        target.closed = close.timestamp

    def resolve(self, handle: int, timestamp: float) -> Optional[Connection]:
        """Connection owning `handle` at `timestamp`, or None."""
        for strategy in self._strategies:
            connection = strategy(handle, timestamp)
            if connection is not None:
                self.stats.resolved += 1
                return connection
        self.stats.unresolved += 1
        return None

    def resolve_all(self, events: Iterable) -> int:
        """
        Attach a connection to every event with `handle`/`timestamp`.

        Returns:
            Number of events left without a connection
        """
        unresolved = 0
        for ev in events:
            ev.connection = self.resolve(ev.handle, ev.timestamp)
            if ev.connection is None:
                unresolved += 1
        return unresolved

    def _match_registered(self, handle: int, timestamp: float) -> Optional[Connection]:
        for connection in self.connections_for(handle):
            if connection.is_matching(handle, timestamp):
                return connection
        return None

    def _synthesize_from_rundown(self, handle: int, timestamp: float) -> Optional[Connection]:
        for rundown in self.rundowns:
            if rundown.handle == handle:
                self.stats.from_rundown += 1
                return self.register(Connection(
                    handle=handle,
                    local=rundown.local,
                    remote=rundown.remote,
                    opened=None,
                    closed=None,
                    process=self.resolve_process(rundown.pid, rundown.timestamp),
                ))
        return None

    def _synthesize_from_accept(self, handle: int, timestamp: float) -> Optional[Connection]:
        for complete in self.accept_completes:
            if complete.handle == handle:
                # An event before the completion time does not match the window;
                # hand back the same synthesized connection instead of a second one.
                existing = self._from_accept.get(id(complete))
                if existing is not None:
                    return existing
                self.stats.from_accept += 1
                connection = self.register(Connection(
                    handle=handle,
                    local=complete.local,
                    remote=complete.remote,
                    opened=complete.timestamp,
                    closed=None,
                    process=self.resolve_process(complete.pid, complete.timestamp),
                ))
                self._from_accept[id(complete)] = connection
                return connection
        return None
