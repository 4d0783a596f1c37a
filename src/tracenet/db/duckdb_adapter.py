"""
DuckDB Adapter for tracenet

Output sink for finished extracts:
- tcp_connections
- tcp_retransmissions
- dns_events

Every row is tagged with the capture name. Rows are written through pandas
DataFrames registered as temporary views.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import duckdb
import pandas as pd

from tracenet.models.schemas import NetworkExtract

logger = logging.getLogger(__name__)

CONNECTION_COLUMNS = [
    'capture', 'conn_index', 'handle', 'local_address', 'local_port', 'remote_address',
    'remote_port', 'opened', 'closed', 'pid', 'image_name', 'last_template',
    'bytes_sent', 'datagrams_sent', 'bytes_received', 'datagrams_received',
]

RETRANSMISSION_COLUMNS = [
    'capture', 'conn_index', 'ts', 'send_time', 'sequence_nr', 'num_bytes', 'receiver_detected',
]

DNS_COLUMNS = [
    'capture', 'pid', 'image_name', 'query', 'result', 'query_status', 'start', 'duration',
    'server_list', 'timed_out', 'timed_out_server', 'adapters',
]


class DuckDBAdapter:
    """
    DuckDB storage for correlation results.

    The engine only writes; the read helpers serve the CLI summary.
    """

    def __init__(self, db_path: str = "data/tracenet.duckdb"):
        """Initialize DuckDB connection"""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = None
        self._initialize_db()

    def _initialize_db(self):
        """Connect and create tables if needed"""
        self.conn = duckdb.connect(str(self.db_path))
        self._create_tables()
        logger.info(f"DuckDB initialized: {self.db_path}")

    def _create_tables(self):
        """Create schema if not exists"""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS tcp_connections (
                capture VARCHAR NOT NULL,
                conn_index INTEGER NOT NULL,
                handle UBIGINT NOT NULL,
                local_address VARCHAR,
                local_port INTEGER,
                remote_address VARCHAR,
                remote_port INTEGER,
                opened DOUBLE,
                closed DOUBLE,
                pid INTEGER,
                image_name VARCHAR,
                last_template VARCHAR,
                bytes_sent UBIGINT,
                datagrams_sent INTEGER,
                bytes_received UBIGINT,
                datagrams_received INTEGER,
                PRIMARY KEY (capture, conn_index)
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS tcp_retransmissions (
                capture VARCHAR NOT NULL,
                conn_index INTEGER NOT NULL,
                ts DOUBLE NOT NULL,
                send_time DOUBLE NOT NULL,
                sequence_nr UBIGINT NOT NULL,
                num_bytes UBIGINT NOT NULL,
                receiver_detected BOOLEAN NOT NULL
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS dns_events (
                capture VARCHAR NOT NULL,
                pid INTEGER,
                image_name VARCHAR,
                query VARCHAR NOT NULL,
                result VARCHAR,
                query_status INTEGER,
                start DOUBLE NOT NULL,
                duration DOUBLE NOT NULL,
                server_list VARCHAR,
                timed_out BOOLEAN,
                timed_out_server VARCHAR,
                adapters VARCHAR
            )
        """)

        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_retrans_conn ON tcp_retransmissions(capture, conn_index)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_dns_query ON dns_events(query)")
        logger.debug("DuckDB schema created/verified")

    def _insert_frame(self, table: str, df: pd.DataFrame) -> int:
        if df.empty:
            return 0
        # NaN from missing optional values must land as NULL
        df = df.copy()
        nullable = [c for c in df.columns if df[c].isna().any()]
        for col in nullable:
            df[col] = pd.Series(
                [None if pd.isna(v) else v for v in df[col]], index=df.index, dtype=object
            )
        view = f"{table}_view"
        self.conn.register(view, df)
        try:
            cols = ", ".join(f'"{c}"' for c in df.columns)
            self.conn.execute(f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {view}")
        finally:
            self.conn.unregister(view)
        return len(df)

    def delete_capture(self, capture: str) -> None:
        for table in ('tcp_connections', 'tcp_retransmissions', 'dns_events'):
            self.conn.execute(f"DELETE FROM {table} WHERE capture = ?", [capture])

    def store_extract(self, extract: NetworkExtract, capture: Optional[str] = None) -> Dict[str, int]:
        """
        Write one capture's results, replacing earlier rows of the same capture.

        Returns:
            Row counts per table
        """
        capture = capture or extract.capture or "default"
        self.delete_capture(capture)

        connections = pd.DataFrame([
            {
                'capture': capture,
                'conn_index': c.index,
                'handle': c.handle,
                'local_address': c.local.address,
                'local_port': c.local.port,
                'remote_address': c.remote.address,
                'remote_port': c.remote.port,
                'opened': c.opened,
                'closed': c.closed,
                'pid': c.process.pid if c.process else None,
                'image_name': c.process.image_name if c.process else None,
                'last_template': c.last_template,
                'bytes_sent': c.bytes_sent,
                'datagrams_sent': c.datagrams_sent,
                'bytes_received': c.bytes_received,
                'datagrams_received': c.datagrams_received,
            }
            for c in extract.connections
        ], columns=CONNECTION_COLUMNS)

        retransmissions = pd.DataFrame([
            {
                'capture': capture,
                'conn_index': r.connection_index,
                'ts': r.timestamp,
                'send_time': r.send_time,
                'sequence_nr': r.sequence_nr,
                'num_bytes': r.num_bytes,
                'receiver_detected': r.is_receiver_detected,
            }
            for r in extract.retransmissions
        ], columns=RETRANSMISSION_COLUMNS)

        dns = pd.DataFrame([
            {
                'capture': capture,
                'pid': d.process.pid if d.process else None,
                'image_name': d.process.image_name if d.process else None,
                'query': d.query,
                'result': d.result,
                'query_status': d.query_status,
                'start': d.start,
                'duration': d.duration,
                'server_list': d.server_list,
                'timed_out': d.timed_out,
                'timed_out_server': d.timed_out_server,
                'adapters': d.adapters,
            }
            for d in extract.dns_events
        ], columns=DNS_COLUMNS)

        counts = {
            'tcp_connections': self._insert_frame('tcp_connections', connections),
            'tcp_retransmissions': self._insert_frame('tcp_retransmissions', retransmissions),
            'dns_events': self._insert_frame('dns_events', dns),
        }
        logger.info(f"Stored capture {capture}: {counts}")
        return counts

    def connection_count(self, capture: str) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM tcp_connections WHERE capture = ?", [capture]
        ).fetchone()[0]

    def retransmission_summary(self, capture: str) -> Dict[str, Any]:
        """
        Returns:
            {"receiver_detected": int, "sender_detected": int, "bytes": int}
        """
        row = self.conn.execute("""
            SELECT
                SUM(CASE WHEN receiver_detected THEN 1 ELSE 0 END),
                SUM(CASE WHEN receiver_detected THEN 0 ELSE 1 END),
                SUM(num_bytes)
            FROM tcp_retransmissions
            WHERE capture = ?
        """, [capture]).fetchone()
        receiver, sender, total = row
        return {
            "receiver_detected": int(receiver or 0),
            "sender_detected": int(sender or 0),
            "bytes": int(total or 0),
        }

    def slowest_dns_queries(self, capture: str, limit: int = 10) -> pd.DataFrame:
        return self.conn.execute("""
            SELECT query, image_name, duration, timed_out, server_list
            FROM dns_events
            WHERE capture = ?
            ORDER BY duration DESC
            LIMIT ?
        """, [capture, limit]).df()

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("DuckDB connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
