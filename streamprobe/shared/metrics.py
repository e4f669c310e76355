"""
MODULE OVERVIEW:
Telemetry records and the reporters that accept them.

WHAT IS HAPPENING HERE:
A session never decides where its samples end up. It is handed a `MetricsReporter`
at construction time and calls `emit()` with ready-made `SampleSet`s. Reporters must
accept samples without blocking the control loop.

Three sample sets exist per session:
  1. right after the connection attempt: connection duration
  2. once per decoded event: an event-received count
  3. when the session ends: request count, send duration, total duration
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from loguru import logger

from streamprobe.shared.models import MetricName, Sample, SampleSet


class MetricsReporter(ABC):
    @abstractmethod
    def emit(self, sample_set: SampleSet) -> None:
        """Accept one sample set. Must not block."""


class BufferedReporter(MetricsReporter):
    """
    Keeps every sample set in memory.
    Used by the CLI to print a summary table and by tests to count samples.
    """
    def __init__(self):
        self.sample_sets: List[SampleSet] = []

    def emit(self, sample_set: SampleSet) -> None:
        self.sample_sets.append(sample_set)

    def samples(self) -> List[Sample]:
        return [sample for sample_set in self.sample_sets for sample in sample_set.samples]

    def count(self, metric: MetricName, url: Optional[str] = None) -> int:
        return sum(
            1 for sample in self.samples()
            if sample.metric == metric and (url is None or sample.tags.get("url") == url)
        )

    def drain(self) -> List[SampleSet]:
        drained, self.sample_sets = self.sample_sets, []
        return drained


class LogReporter(MetricsReporter):
    def __init__(self, level: str = "DEBUG"):
        self.level = level

    def emit(self, sample_set: SampleSet) -> None:
        for sample in sample_set.samples:
            tags = " ".join(f"{k}={v}" for k, v in sorted(sample.tags.items()))
            logger.log(self.level, f"metric={sample.metric.value} value={sample.value:.3f} {tags}")


def duration_ms(start: float, end: float) -> float:
    """Milliseconds between two `time.perf_counter()` readings."""
    return (end - start) * 1000


def _sample_set(points: Dict[MetricName, float], tags: Dict[str, str], at: datetime) -> SampleSet:
    # Tags are copied so later tag updates do not rewrite emitted samples
    frozen_tags = dict(tags)
    return SampleSet(
        samples=[
            Sample(metric=metric, tags=dict(frozen_tags), time=at, value=value)
            for metric, value in points.items()
        ],
        tags=frozen_tags,
        time=at,
    )


def connecting_samples(tags: Dict[str, str], started_at: datetime, connecting_ms: float) -> SampleSet:
    return _sample_set({MetricName.HTTP_REQ_CONNECTING: connecting_ms}, tags, started_at)


def request_samples(
    tags: Dict[str, str],
    connecting_ms: float,
    total_ms: float,
    ended_at: Optional[datetime] = None,
) -> SampleSet:
    return _sample_set(
        {
            MetricName.HTTP_REQS: 1,
            MetricName.HTTP_REQ_SENDING: connecting_ms,
            MetricName.HTTP_REQ_DURATION: total_ms,
        },
        tags,
        ended_at or datetime.now(timezone.utc),
    )


def event_sample(tags: Dict[str, str]) -> SampleSet:
    return _sample_set({MetricName.SSE_EVENT: 1}, tags, datetime.now(timezone.utc))
