# MIT License
# Copyright (c) 2025 Hashborn

"""
Time-indexed value history.

Each tracked metric keeps a sorted list of (timestamp, value) entries.
value_at(t) returns the first entry recorded at or after t, which is the
first data point that already reflects instant t. When nothing was recorded
at or after t the metric has not changed since, so the live value is returned.
"""

import bisect
import logging
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)

ACC_REWARDS_PER_SHARE = "acc_rewards_per_share"
POOL_FACTOR = "pool_factor"
LAST_REWARD_TIMESTAMP = "last_reward_timestamp"

METRICS = (ACC_REWARDS_PER_SHARE, POOL_FACTOR, LAST_REWARD_TIMESTAMP)


class SnapshotSeries:
    def __init__(self, metric: str):
        self.metric = metric
        self._ids: List[int] = []
        self._values: List[int] = []

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def last_id(self) -> int:
        return self._ids[-1] if self._ids else 0

    def append(self, id: int, value: int) -> bool:
        """Records value at id. Ids at or before the last recorded one are ignored."""
        if id <= self.last_id:
            return False
        self._ids.append(id)
        self._values.append(value)
        logger.debug(f"Snapshot {self.metric}@{id} = {value}")
        return True

    def value_at(self, id: int, now: int, live: int) -> int:
        if id <= 0 or id > now:
            raise ValueError(f"Snapshot id {id} must be within (0, {now}]")

        index = bisect.bisect_left(self._ids, id)
        if index == len(self._ids):
            return live
        return self._values[index]

    def entries(self, start: int = 0) -> List[Tuple[int, int]]:
        """Entries from position start onwards."""
        return list(zip(self._ids[start:], self._values[start:]))


class SnapshotStore:
    """One SnapshotSeries per tracked pool metric."""

    def __init__(self, metrics=METRICS):
        self.series: Dict[str, SnapshotSeries] = {m: SnapshotSeries(m) for m in metrics}

    def __getitem__(self, metric: str) -> SnapshotSeries:
        return self.series[metric]

    def record(self, metric: str, id: int, value: int) -> bool:
        return self.series[metric].append(id, value)

    def value_at(self, metric: str, id: int, now: int, live: int) -> int:
        return self.series[metric].value_at(id, now, live)

    def counts(self) -> Dict[str, int]:
        return {metric: len(series) for metric, series in self.series.items()}
