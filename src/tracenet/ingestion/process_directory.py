"""
Process Directory

Resolves an OS process id at a point in time to a stable ProcessIdentity.
Process ids are reused by the OS, so each pid maps to a list of lifetimes.
"""

import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from tracenet.models.schemas import ProcessIdentity

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['pid', 'image_name', 'start', 'end']


def _start_key(identity: ProcessIdentity) -> float:
    return identity.start_time if identity.start_time is not None else float('-inf')


class ProcessDirectory:
    """
    pid + timestamp -> ProcessIdentity

    A lifetime is [start, end); end None means still running at capture end.
    When lifetimes of one pid overlap (noisy data) the latest start wins.
    """

    def __init__(self, processes: Iterable[Tuple[ProcessIdentity, Optional[float]]] = ()):
        self._by_pid: Dict[int, List[Tuple[ProcessIdentity, Optional[float]]]] = defaultdict(list)
        for identity, end in processes:
            self.add(identity, end)

    def add(self, identity: ProcessIdentity, end: Optional[float] = None) -> None:
        """Insert a lifetime, keeping the pid's lifetimes ordered by start."""
        lifetimes = self._by_pid[identity.pid]
        key = _start_key(identity)
        # rows arrive sorted from from_dataframe, so this is normally an append
        pos = len(lifetimes)
        while pos > 0 and _start_key(lifetimes[pos - 1][0]) > key:
            pos -= 1
        lifetimes.insert(pos, (identity, end))

    def resolve(self, pid: int, timestamp: float) -> Optional[ProcessIdentity]:
        """Return the process owning `pid` at `timestamp`, or None."""
        for identity, end in reversed(self._by_pid.get(pid, ())):
            started = identity.start_time is None or identity.start_time <= timestamp
            running = end is None or timestamp < end
            if started and running:
                return identity
        return None

    def __call__(self, pid: int, timestamp: float) -> Optional[ProcessIdentity]:
        return self.resolve(pid, timestamp)

    def __len__(self):
        return sum(len(v) for v in self._by_pid.values())

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "ProcessDirectory":
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"process table lacks columns: {missing}")

        directory = cls()
        df = df.sort_values('start', kind='stable', na_position='first')
        for row in df.itertuples(index=False):
            start = None if pd.isna(row.start) else float(row.start)
            end = None if pd.isna(row.end) else float(row.end)
            directory.add(ProcessIdentity(int(row.pid), str(row.image_name), start), end)
        return directory

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "ProcessDirectory":
        """Load a process table with columns pid, image_name, start, end."""
        df = pd.read_csv(path)
        directory = cls.from_dataframe(df)
        logger.info(f"Loaded {len(directory)} process lifetimes from {Path(path).name}")
        return directory
