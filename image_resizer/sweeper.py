"""Retention sweeping for Image Resizer.

Deletes artifacts older than the retention period on a fixed interval.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import NotFound
from .models import ArtifactKind, SweepReport
from .storage import ArtifactStore


logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 60 * 60
DEFAULT_INTERVAL_SECONDS = 60 * 60


class RetentionSweeper:
    """Periodic cleanup of expired artifacts.

    The clock and sleep function are injectable so tests can advance time
    instead of waiting.
    """

    def __init__(
        self,
        store: ArtifactStore,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.retention_seconds = retention_seconds
        self.interval_seconds = interval_seconds
        self.clock = clock or store.clock
        self.sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def sweep_once(self) -> SweepReport:
        """Delete every artifact older than the retention period.

        Partial files left by interrupted writes expire on the same schedule.

        Failures are per file: an error listing one namespace or deleting one
        file is logged and the sweep carries on.

        Returns:
            SweepReport with scanned, deleted, failed and purged names
        """
        report = SweepReport()
        now = self.clock()

        for kind in ArtifactKind:
            try:
                report.purged.extend(
                    self.store.purge_partials(kind, older_than=now - self.retention_seconds)
                )
            except OSError as e:
                logger.warning("Could not clean partial %s files: %s", kind.value, e)

            try:
                artifacts = self.store.list(kind)
            except OSError as e:
                logger.warning("Could not list %s artifacts: %s", kind.value, e)
                continue

            for artifact in artifacts:
                report.scanned += 1
                if artifact.age(now) <= self.retention_seconds:
                    continue
                try:
                    self.store.delete(artifact.name, kind)
                except NotFound:
                    # Already gone (manual removal or a concurrent sweep)
                    continue
                except OSError as e:
                    logger.warning("Failed to delete %s/%s: %s", kind.value, artifact.name, e)
                    report.failed.append(artifact.name)
                    continue
                report.deleted.append(artifact.name)

        if report.deleted or report.failed or report.purged:
            logger.info(
                "Retention sweep removed %d of %d artifacts (%d failed, %d partial files)",
                len(report.deleted), report.scanned, len(report.failed), len(report.purged),
            )
        return report

    async def run(self) -> None:
        """Sweep every interval until cancelled."""
        logger.info(
            "Retention sweeper started (retention %ss, interval %ss)",
            self.retention_seconds, self.interval_seconds,
        )
        while True:
            await self.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.sweep_once)
            except Exception:
                logger.exception("Retention sweep failed")

    def start(self) -> asyncio.Task:
        """Start the sweep loop as a background task on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="retention-sweeper")
        return self._task

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Retention sweeper stopped")
