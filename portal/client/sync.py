"""
Sync coordinator — drains the outbound queue to ``POST /sync``.

    IDLE --drain()--> DRAINING --batch answered or failed--> IDLE

At most one drain runs at a time; a drain requested while one is running
returns a skipped report instead of sending a second, overlapping batch.
Queue entries are removed only once the server has confirmed them.
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from portal.client.api_client import PortalAPIClient, PortalClientError
from portal.client.connectivity import ConnectivityMonitor
from portal.client.storage import OutboundQueue, QueuedPayload, epoch_ms

logger = logging.getLogger(__name__)

# Item statuses the client may delete: stored, or permanently refused
CONFIRMED_STATUSES = ("synced", "rejected")


class SyncState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"


@dataclass
class SyncReport:
    attempted: int = 0
    synced: int = 0
    rejected: int = 0
    removed: int = 0
    retained: int = 0
    skipped: bool = False
    error: Optional[str] = None
    finished_at: Optional[int] = None

    @property
    def ok(self) -> bool:
        return not self.skipped and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def confirmed_ids(batch: List[QueuedPayload], response: Dict[str, Any]) -> List[int]:
    """Queue ids the server response allows us to delete."""
    batch_ids = [entry.id for entry in batch]
    results = response.get("results")

    if isinstance(results, list):
        confirmed = []
        for result in results:
            if not isinstance(result, dict) or result.get("status") not in CONFIRMED_STATUSES:
                continue
            item_id = result.get("id")
            if item_id is None:
                index = result.get("index")
                if isinstance(index, int) and 0 <= index < len(batch_ids):
                    item_id = batch_ids[index]
            if item_id in batch_ids and item_id not in confirmed:
                confirmed.append(item_id)
        return confirmed

    # Counts-only response: all or nothing
    if (
        response.get("synced") == len(batch)
        and response.get("total") == len(batch)
        and not response.get("errors")
    ):
        return batch_ids
    return []


class SyncCoordinator:
    def __init__(
        self,
        queue: OutboundQueue,
        api: PortalAPIClient,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.queue = queue
        self.api = api
        self.clock = clock or epoch_ms
        self.state = SyncState.IDLE
        self.last_report: Optional[SyncReport] = None
        self._monitor: Optional[ConnectivityMonitor] = None

    @property
    def draining(self) -> bool:
        return self.state is SyncState.DRAINING

    def attach(self, monitor: ConnectivityMonitor) -> None:
        """Drain automatically on every OFFLINE -> ONLINE transition."""
        self._monitor = monitor
        monitor.on_reconnect(self.drain)

    async def drain(self) -> SyncReport:
        if self.state is SyncState.DRAINING:
            logger.info("[SYNC] Drain already in progress, skipping")
            return SyncReport(skipped=True)

        self.state = SyncState.DRAINING
        if self._monitor is not None:
            self._monitor.set_syncing(True)
        try:
            report = await self._drain_batch()
        finally:
            self.state = SyncState.IDLE
            if self._monitor is not None:
                self._monitor.set_syncing(False)

        report.finished_at = self.clock()
        self.last_report = report
        return report

    async def _drain_batch(self) -> SyncReport:
        batch = await self.queue.list()
        if not batch:
            return SyncReport()

        report = SyncReport(attempted=len(batch))
        try:
            response = await self.api.sync([entry.to_sync_item() for entry in batch])
        except PortalClientError as e:
            logger.warning("[SYNC] Sync of %d queued item(s) failed, keeping them: %s", len(batch), e)
            report.retained = len(batch)
            report.error = str(e)
            return report

        for result in response.get("results") or []:
            status = result.get("status") if isinstance(result, dict) else None
            if status == "synced":
                report.synced += 1
            elif status == "rejected":
                report.rejected += 1
        if not isinstance(response.get("results"), list):
            report.synced = int(response.get("synced") or 0)

        confirmed = confirmed_ids(batch, response)
        report.removed = await self.queue.remove(confirmed)
        report.retained = len(batch) - len(confirmed)
        logger.info(
            "[SYNC] Drained %d item(s): %d removed, %d kept for retry",
            len(batch), len(confirmed), report.retained,
        )
        return report
