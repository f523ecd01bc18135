"""
Reconciliation Loop

Background task that periodically checks every Nomad task for image
freshness and republishes the metrics.

Workflow per cycle:
1. Fetch the job list (failure aborts the cycle, not the loop)
2. Fetch each job's detail, skipping dispatched/periodic children
3. Flatten job → group → task
4. Resolve freshness per task (failures skip the task only)
5. Replace the published metrics in one step
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from monitor.metrics import FreshnessMetrics, TaskKey
from nomad.client import NomadAPIError, NomadClient
from nomad.models import DockerConfig, JobDetail, RawExecConfig, TaskRef, flatten_tasks
from registry.freshness import FreshnessResolver
from registry.image_ref import InvalidReference, parse_image_reference
from registry.types import FreshnessResult, UpToDate

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL = 15 * 60


class Reconciler:
    """
    Runs reconciliation cycles on a fixed interval.

    Args:
        nomad: Nomad API client
        resolver: freshness resolver
        metrics: shared metrics sink
        interval: seconds between cycles
        concurrency: number of tasks checked at once (1 = sequential)
    """

    def __init__(
        self,
        nomad: NomadClient,
        resolver: FreshnessResolver,
        metrics: FreshnessMetrics,
        interval: float = DEFAULT_CHECK_INTERVAL,
        concurrency: int = 1,
    ):
        self.nomad = nomad
        self.resolver = resolver
        self.metrics = metrics
        self.interval = interval
        self.concurrency = concurrency
        self.shutdown_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self.last_stats: Optional[Dict[str, Any]] = None

    def trigger(self, *_args):
        """Request an out-of-cycle check (manual trigger or event stream)."""
        self._wake_event.set()

    async def run(self):
        """Run cycles until the shutdown event is set."""
        logger.info(f"Starting reconciliation loop (interval {self.interval}s)")

        while not self.shutdown_event.is_set():
            try:
                await self.check()
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)

            await self._wait_for_next_cycle()

        logger.info("Reconciliation loop stopped")

    async def _wait_for_next_cycle(self):
        waiters = [
            asyncio.create_task(self.shutdown_event.wait()),
            asyncio.create_task(self._wake_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=self.interval, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def check(self) -> Dict[str, Any]:
        """
        Run one reconciliation cycle.

        Returns:
            Dict with keys: jobs, tasks, resolved, skipped, aborted
        """
        # Triggers arriving during this cycle schedule the next one
        self._wake_event.clear()

        logger.info("Running check")
        started = time.monotonic()
        stats = {"jobs": 0, "tasks": 0, "resolved": 0, "skipped": 0, "aborted": False}

        try:
            jobs = await self._load_jobs()
        except NomadAPIError as e:
            logger.error(f"Aborting check, could not load jobs: {e}")
            stats["aborted"] = True
            self.last_stats = stats
            return stats

        task_refs = [ref for job in jobs for ref in flatten_tasks(job)]
        stats["jobs"] = len(jobs)
        stats["tasks"] = len(task_refs)

        logger.info(f"Processing {len(task_refs)} tasks from {len(jobs)} jobs")

        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes = await asyncio.gather(*(self._check_task(ref, semaphore) for ref in task_refs))

        resolved: List[Tuple[TaskKey, FreshnessResult]] = []
        skipped: List[TaskKey] = []
        for ref, result in zip(task_refs, outcomes):
            if result is None:
                skipped.append(ref.key)
            else:
                resolved.append((ref.key, result))

        duration = time.monotonic() - started
        self.metrics.publish(resolved, retain=skipped, duration=duration)

        stats["resolved"] = len(resolved)
        stats["skipped"] = len(skipped)
        self.last_stats = stats
        logger.info(f"Check done in {duration:.1f}s: {stats}")
        return stats

    async def _load_jobs(self) -> List[JobDetail]:
        """
        Fetch details of every top-level job.

        Raises:
            NomadAPIError: if the list or any detail cannot be loaded
        """
        entries = await self.nomad.list_jobs()

        jobs = []
        for entry in entries:
            if entry.is_child:
                logger.debug(f"Skipping child job {entry.id} (parent {entry.parent_id})")
                continue

            job = await self.nomad.read_job(entry.id)
            if job.is_child:
                logger.debug(f"Skipping child job {job.name} (parent {job.parent_id})")
                continue
            jobs.append(job)
        return jobs

    async def _check_task(self, ref: TaskRef, semaphore: asyncio.Semaphore) -> Optional[FreshnessResult]:
        async with semaphore:
            try:
                return await self.resolve_task(ref)
            except Exception as e:
                logger.error(f"Error checking task {ref}: {e}", exc_info=True)
                return None

    async def resolve_task(self, ref: TaskRef) -> Optional[FreshnessResult]:
        """
        Resolve freshness for a single task.

        Returns:
            FreshnessResult, or None when the task is skipped this cycle
        """
        config = ref.driver_config

        if isinstance(config, DockerConfig):
            try:
                image = parse_image_reference(config.image)
            except InvalidReference as e:
                logger.warning(f"Skipping task {ref}: cannot check image {e.raw!r}")
                return None
            return await self.resolver.resolve(image)

        if isinstance(config, RawExecConfig):
            logger.debug(f"Task {ref} uses raw_exec, reporting as up to date")
            return UpToDate(version="")

        logger.warning(f"Skipping task {ref}: nothing to check for driver {config.driver!r}")
        return None
