"""
casedesk Stale Case Monitor

Escalates cases that have been open too long.

A case is stale when it started more than `threshold_hours` ago, is not
COMPLETED/CANCELLED and has a handler. Its handler's login identity gets
exactly one escalation notice per case; later scans find the earlier
notice by its title marker and skip.

Dedup is check-then-act. It is safe with one active scan at a time,
which the lock below guarantees within a process; across processes,
run the monitor in one of them only (`stale_monitor_enabled`). The
notification store's unique key on escalations is the backstop.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from ..models.case import Case, CaseKind, utcnow
from ..models.notification import StaleCaseDetected

logger = logging.getLogger(__name__)


class StaleCaseMonitor:
    """
    Scans every case kind for stale cases.

    Runs periodically via start()/stop(), or one pass at a time via
    run_once() (the admin endpoint does this).
    """

    DEFAULT_THRESHOLD_HOURS = 18
    DEFAULT_INTERVAL_SECONDS = 900.0

    def __init__(
        self,
        case_repos,
        person_directory,
        inbox,
        dispatcher,
        threshold_hours: int = DEFAULT_THRESHOLD_HOURS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    ):
        self.cases = case_repos
        self.people = person_directory
        self.inbox = inbox
        self.dispatcher = dispatcher
        self.threshold = timedelta(hours=threshold_hours)
        self.interval_seconds = interval_seconds
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """
        One pass over all kinds. Returns the number of escalations sent.

        If a pass is already in progress this returns 0 immediately rather
        than scanning concurrently.
        """
        if self._lock.locked():
            logger.warning("Stale case scan already running; skipping")
            return 0

        async with self._lock:
            now = now or utcnow()
            cutoff = now - self.threshold
            sent = 0
            for kind, repo in self.cases:
                try:
                    sent += await self._scan_kind(kind, repo, cutoff)
                except Exception:
                    logger.exception(f"Stale case scan failed for {kind.value} cases")

            logger.info(f"Stale case scan finished: {sent} escalation(s) sent")
            return sent

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name="casedesk-stale-monitor")
        logger.info(
            f"Stale case monitor started (threshold {self.threshold}, "
            f"every {self.interval_seconds:.0f}s)"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stale case monitor stopped")

    # =========================================================================
    # Private methods
    # =========================================================================

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Stale case scan crashed")
            await asyncio.sleep(self.interval_seconds)

    async def _scan_kind(self, kind: CaseKind, repo, cutoff: datetime) -> int:
        sent = 0
        for case in await repo.find_stale(cutoff):
            if await self._escalate(case):
                sent += 1
        return sent

    async def _escalate(self, case: Case) -> bool:
        handler = await self.people.find_person_by_id(case.handler_id)
        if handler is None or handler.user_id is None:
            # No login identity to notify
            return False

        recipient_id = handler.user_id
        if await self.inbox.exists_marker(recipient_id, case.id, self.dispatcher.marker):
            return False

        delivered = await self.dispatcher.dispatch(
            StaleCaseDetected(case=case, recipient_id=recipient_id, handler_name=handler.full_name)
        )
        if delivered:
            logger.info(f"Escalated stale {case.kind.value} case {case.id} to {recipient_id}")
        return delivered > 0
