"""
Freshness Metrics

Holds the per-task freshness results of the latest reconciliation and
renders them in the Prometheus text format.

Gauges (labels job, group, task):
- up_to_date: 1 when the task runs the newest version, else 0
- out_of_date: 1 when a newer version is published, else 0
- versions: always 1, additionally labelled with current/newest

Scrapes read a snapshot under the same lock that publish() holds while
replacing it, so a scrape never sees a half-cleared set.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, Optional, Tuple

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily

from registry.types import FreshnessResult, OutOfDate, UpToDate

logger = logging.getLogger(__name__)

TaskKey = Tuple[str, str, str]

TASK_LABELS = ["job", "group", "task"]


class FreshnessMetrics:
    """
    Metrics sink for the reconciler.

    Constructed once at startup and handed to both the reconciler and the
    /metrics endpoint.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._lock = threading.RLock()
        self._results: Dict[TaskKey, FreshnessResult] = {}
        self._last_check: Optional[float] = None
        self._last_duration: Optional[float] = None
        self._last_skipped = 0
        self.registry.register(self)

    @contextmanager
    def transaction(self) -> Iterator["FreshnessMetrics"]:
        """Hold the lock so several mutations are observed together."""
        with self._lock:
            yield self

    def clear(self):
        """Forget every published result."""
        with self._lock:
            self._results.clear()

    def update(self, job: str, group: str, task: str, result: FreshnessResult):
        with self._lock:
            self._results[(job, group, task)] = result

    def publish(
        self,
        results: Iterable[Tuple[TaskKey, FreshnessResult]],
        retain: Iterable[TaskKey] = (),
        duration: Optional[float] = None,
    ):
        """
        Replace all results with those of a finished cycle.

        Args:
            results: (job, group, task) → result for every resolved task
            retain: keys of tasks that still exist but were skipped this
                cycle; their previous result, if any, is kept
            duration: cycle duration in seconds
        """
        with self.transaction():
            previous = {key: self._results[key] for key in retain if key in self._results}
            self.clear()
            for (job, group, task), result in results:
                self.update(job, group, task, result)
            for (job, group, task), result in previous.items():
                self.update(job, group, task, result)

            self._last_check = time.time()
            self._last_duration = duration
            self._last_skipped = len(set(retain))

        logger.debug(f"Published {len(self._results)} task results ({len(previous)} retained)")

    def snapshot(self) -> Dict[TaskKey, FreshnessResult]:
        with self._lock:
            return dict(self._results)

    def collect(self):
        with self._lock:
            results = dict(self._results)
            last_check = self._last_check
            last_duration = self._last_duration
            skipped = self._last_skipped

        up_to_date = GaugeMetricFamily(
            "up_to_date",
            "The Jobs/Tasks that are up to date will be set to 1 others to 0",
            labels=TASK_LABELS,
        )
        out_of_date = GaugeMetricFamily(
            "out_of_date",
            "The Jobs/Tasks that are out of date will be set to 1 others to 0",
            labels=TASK_LABELS,
        )
        versions = GaugeMetricFamily(
            "versions",
            "The Versions for the Jobs/Tasks",
            labels=TASK_LABELS + ["current", "newest"],
        )

        for (job, group, task), result in sorted(results.items()):
            labels = [job, group, task]
            if isinstance(result, OutOfDate):
                up_to_date.add_metric(labels, 0)
                out_of_date.add_metric(labels, 1)
                versions.add_metric(labels + [result.current, result.newest], 1)
            elif isinstance(result, UpToDate):
                up_to_date.add_metric(labels, 1)
                out_of_date.add_metric(labels, 0)
                versions.add_metric(labels + [result.version, result.version], 1)

        yield up_to_date
        yield out_of_date
        yield versions

        if last_check is not None:
            yield GaugeMetricFamily(
                "vmonitor_last_check_timestamp_seconds",
                "Unix time the last reconciliation finished",
                value=last_check,
            )
            yield GaugeMetricFamily(
                "vmonitor_skipped_tasks",
                "Tasks skipped in the last reconciliation",
                value=skipped,
            )
        if last_duration is not None:
            yield GaugeMetricFamily(
                "vmonitor_check_duration_seconds",
                "Duration of the last reconciliation",
                value=last_duration,
            )

    def render(self) -> bytes:
        """Prometheus text exposition of the registry."""
        return generate_latest(self.registry)
