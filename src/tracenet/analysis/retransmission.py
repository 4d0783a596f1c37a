"""
Retransmission Detector

Two independent detectors over resolved, aggregated connection traffic:

- Receiver side: the same sequence number received more than once with a
  payload > 1 byte. Only repeats within 3s of the first occurrence count;
  this bounds false positives from sequence number rollover and holds up to
  roughly 10 Gbit/s links.
- Sender side: every retransmit signal (explicit or tail loss probe) is
  matched against the sends of its connection whose sequence number equals
  SndUna. Each matching send gives one record.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping

from tracenet.analysis.connection_aggregator import ConnectionTraffic
from tracenet.analysis.connection_resolver import Connection
from tracenet.models.events import RetransmitSignal
from tracenet.models.schemas import RetransmissionRecord

logger = logging.getLogger(__name__)

DUPLICATE_SEGMENT_WINDOW_SECONDS = 3.0
KEEPALIVE_PAYLOAD_BYTES = 1  # keep-alive probes repeat the sequence number with this payload


def detect_receiver_retransmissions(
    traffic: ConnectionTraffic,
    connection_index: int,
    window_seconds: float = DUPLICATE_SEGMENT_WINDOW_SECONDS,
) -> List[RetransmissionRecord]:
    """
    Duplicate received segments on one connection.

    Args:
        traffic: Connection with time-ordered receives
        connection_index: Index of the emitted ConnectionRecord
        window_seconds: Repeats later than this after the first occurrence are ignored

    Returns:
        One record per repeated segment inside the window
    """
    by_sequence: Dict[int, list] = defaultdict(list)
    for receive in traffic.receives:
        if receive.num_bytes > KEEPALIVE_PAYLOAD_BYTES:
            by_sequence[receive.sequence_nr].append(receive)

    records = []
    for sequence_nr, candidates in by_sequence.items():
        if len(candidates) < 2:
            continue
        candidates = sorted(candidates, key=lambda r: r.timestamp)
        first = candidates[0].timestamp
        for candidate in candidates[1:]:
            if candidate.timestamp - first < window_seconds:
                records.append(RetransmissionRecord(
                    connection_index=connection_index,
                    timestamp=candidate.timestamp,
                    send_time=first,
                    sequence_nr=sequence_nr,
                    num_bytes=candidate.num_bytes,
                    is_receiver_detected=True,
                ))
    return records


def detect_sender_retransmissions(
    signals: Iterable[RetransmitSignal],
    traffic_by_connection: Mapping[Connection, ConnectionTraffic],
    index_by_connection: Mapping[Connection, int],
) -> List[RetransmissionRecord]:
    """
    Correlate retransmit signals with earlier sends.

    Signals without a resolved connection are skipped.
    """
    records = []
    for signal in signals:
        if signal.connection is None:
            continue
        traffic = traffic_by_connection.get(signal.connection)
        if traffic is None:
            continue
        connection_index = index_by_connection[signal.connection]
        for sent in traffic.sends:
            if sent.sequence_nr == signal.snd_una:
                records.append(RetransmissionRecord(
                    connection_index=connection_index,
                    timestamp=signal.timestamp,
                    send_time=sent.timestamp,
                    sequence_nr=sent.sequence_nr,
                    num_bytes=sent.num_bytes,
                    is_receiver_detected=False,
                ))
    return records


class RetransmissionDetector:
    """Runs both detectors over the same aggregated traffic."""

    def __init__(self, window_seconds: float = DUPLICATE_SEGMENT_WINDOW_SECONDS):
        self.window_seconds = window_seconds

    def detect(
        self,
        traffic: List[ConnectionTraffic],
        index_by_connection: Mapping[Connection, int],
        signals: Iterable[RetransmitSignal],
    ) -> List[RetransmissionRecord]:
        """
        Returns:
            Receiver-detected records in connection order, then sender-detected
            records in signal order
        """
        records = []
        for item in traffic:
            records.extend(detect_receiver_retransmissions(
                item, index_by_connection[item.connection], self.window_seconds
            ))
        receiver_count = len(records)

        traffic_by_connection = {item.connection: item for item in traffic}
        records.extend(detect_sender_retransmissions(signals, traffic_by_connection, index_by_connection))

        logger.info(
            f"Detected {receiver_count} receiver-side and "
            f"{len(records) - receiver_count} sender-side retransmissions"
        )
        return records
