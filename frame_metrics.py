"""
Rolling statistics for the monitored app.

A ``RollingDataset`` keeps two kinds of state side by side: a fixed size
window of the most recent samples (newest first) used for the live chart,
and session-wide cumulative figures (min, max, total, count) that are never
windowed. Frame timings additionally feed a cumulative latency ``Histogram``
and a ``JankyFrameCounter``.
"""

import bisect
import math
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

DEFAULT_CAPACITY = 120
JANKY_THRESHOLD_MS = 16.67  # 60 Hz frame budget
HISTOGRAM_THRESHOLDS = (0, 16.66, 33.33, 50, 100, 200, 300, 400, 500, 1000)


def format_histogram_range(threshold: float) -> str:
    # Shortest exact form, so distinct thresholds never share a label.
    value = float(threshold)
    text = str(int(value)) if value.is_integer() else repr(value)
    return f"More than {text}ms"


# -------------------- Snapshots --------------------
@dataclass(frozen=True)
class DatasetSnapshot:
    entries: Tuple[float, ...]
    min: Optional[float]
    max: Optional[float]
    average: float
    total: float
    nb_of_entries: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": list(self.entries),
            "min": self.min,
            "max": self.max,
            "average": self.average,
            "total": self.total,
            "nbOfEntries": self.nb_of_entries,
        }


@dataclass(frozen=True)
class FrameSnapshot(DatasetSnapshot):
    janky_frames: int = 0
    histogram: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def janky_percent(self) -> float:
        if self.nb_of_entries == 0:
            return 0.0
        return self.janky_frames * 100 / self.nb_of_entries

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "jankyFrames": self.janky_frames,
            "jankyPercent": self.janky_percent,
            "histogram": dict(self.histogram),
        })
        return data


# -------------------- Rolling dataset --------------------
class RollingDataset:
    """Bounded window of recent samples plus unbounded cumulative stats."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        # Unfilled slots hold 0 so the chart always spans the full window.
        self.entries = deque([0.0] * capacity, maxlen=capacity)
        self.min = math.inf
        self.max = -math.inf
        self.total = 0.0
        self.nb_of_entries = 0

    @property
    def average(self) -> float:
        if self.nb_of_entries == 0:
            return 0.0
        return self.total / self.nb_of_entries

    def merge(self, samples: Sequence[float]) -> None:
        """Fold a batch of samples (oldest first) into the dataset.

        The whole batch counts toward the cumulative figures even when it is
        longer than the window; only the newest ``capacity`` samples stay in
        ``entries``.
        """
        if not samples:
            raise ValueError("merge needs at least one sample")
        for sample in samples:
            self.entries.appendleft(sample)
        self.min = min(self.min, min(samples))
        self.max = max(self.max, max(samples))
        self.total += sum(samples)
        self.nb_of_entries += len(samples)

    def _snapshot_fields(self) -> Dict[str, Any]:
        seen = self.nb_of_entries > 0
        return dict(
            entries=tuple(self.entries),
            min=self.min if seen else None,
            max=self.max if seen else None,
            average=self.average,
            total=self.total,
            nb_of_entries=self.nb_of_entries,
        )

    def snapshot(self) -> DatasetSnapshot:
        return DatasetSnapshot(**self._snapshot_fields())


# -------------------- Histogram --------------------
class Histogram:
    """Cumulative sample counts per fixed latency bucket.

    A sample lands in the bucket of the largest threshold not exceeding it.
    Anything below the first threshold is counted in the first bucket, so the
    label set never changes after construction.
    """

    def __init__(self, thresholds: Iterable[float] = HISTOGRAM_THRESHOLDS):
        self.thresholds = tuple(sorted(thresholds))
        if not self.thresholds:
            raise ValueError("histogram needs at least one threshold")
        self.labels = tuple(format_histogram_range(t) for t in self.thresholds)
        if len(set(self.labels)) != len(self.labels):
            raise ValueError(f"histogram thresholds must be distinct: {self.thresholds}")
        self.buckets = dict.fromkeys(self.labels, 0)

    def bucket_for(self, sample: float) -> str:
        index = bisect.bisect_right(self.thresholds, sample) - 1
        return self.labels[max(index, 0)]

    def merge(self, samples: Iterable[float]) -> None:
        for sample in samples:
            self.buckets[self.bucket_for(sample)] += 1

    @property
    def count(self) -> int:
        return sum(self.buckets.values())

    def snapshot(self) -> Mapping[str, int]:
        return MappingProxyType(dict(self.buckets))


# -------------------- Janky frames --------------------
def count_janky(samples: Iterable[float], threshold_ms: float = JANKY_THRESHOLD_MS) -> int:
    """Number of samples strictly above the frame budget."""
    return sum(1 for sample in samples if sample > threshold_ms)


class JankyFrameCounter:
    def __init__(self, threshold_ms: float = JANKY_THRESHOLD_MS):
        self.threshold_ms = threshold_ms
        self.total = 0

    def merge(self, samples: Iterable[float]) -> int:
        new = count_janky(samples, self.threshold_ms)
        self.total += new
        return new


# -------------------- Frame timings --------------------
class FrameMetrics:
    """Everything tracked for frame render times."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY,
                 thresholds: Iterable[float] = HISTOGRAM_THRESHOLDS,
                 janky_threshold_ms: float = JANKY_THRESHOLD_MS):
        self.dataset = RollingDataset(capacity)
        self.histogram = Histogram(thresholds)
        self.janky = JankyFrameCounter(janky_threshold_ms)

    def update(self, samples: Sequence[float]) -> bool:
        """Merge normalized samples; returns False when there was nothing to merge."""
        if not samples:
            return False
        self.dataset.merge(samples)
        self.histogram.merge(samples)
        self.janky.merge(samples)
        return True

    def snapshot(self) -> FrameSnapshot:
        return FrameSnapshot(
            janky_frames=self.janky.total,
            histogram=self.histogram.snapshot(),
            **self.dataset._snapshot_fields(),
        )
