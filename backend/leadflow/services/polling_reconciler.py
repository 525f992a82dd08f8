"""
Polling reconciler.

Periodically pulls recent records from a LeadSource and feeds them through
lead intake. New leads get their workflow initialized exactly once (by the
intake path, on "created" only); already-known leads are updated in place.
"""
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from leadflow.clock import Clock, utcnow
from leadflow.services.lead_intake import LeadIntakeService
from leadflow.services.tracking import generate_tracking_id
from leadflow.sources.base import LeadSource
from leadflow.stores.base import SyncCheckpointStore

logger = logging.getLogger(__name__)


def _record_external_id(raw: Dict[str, Any]) -> Optional[str]:
    for key in ("id", "leadgen_id", "external_id", "uri"):
        if raw.get(key):
            return str(raw[key])
    return None


class PollingReconciler:
    """
    One reconciler per external source.

    The checkpoint advances to the time the sync *started* after every cycle
    that managed to query the source, whether it found nothing, everything
    succeeded or some records failed. A failed fetch leaves it untouched so
    the same window is retried on the next tick.
    """

    def __init__(
        self,
        source: LeadSource,
        intake: LeadIntakeService,
        checkpoint_store: SyncCheckpointStore,
        clock: Clock = utcnow,
        scheduler: Optional[AsyncIOScheduler] = None,
        interval_minutes: int = 15,
        max_leads_per_sync: int = 100,
        initial_lookback: timedelta = timedelta(hours=24)
    ):
        self.source = source
        self.intake = intake
        self.checkpoints = checkpoint_store
        self.clock = clock
        self.scheduler = scheduler
        self.interval_minutes = interval_minutes
        self.max_leads_per_sync = max_leads_per_sync
        self.initial_lookback = initial_lookback

        self.sync_key = f"{source.source_tag}_polling"
        self.scheduler_job_id = f"{source.source_tag}_polling"
        self.is_syncing = False
        self.last_sync_time: Optional[datetime] = None
        self.last_result: Optional[Dict[str, Any]] = None

    # ========================================
    # SYNC
    # ========================================

    async def perform_sync(self, tracking_id: Optional[str] = None) -> Dict[str, Any]:
        tracking_id = tracking_id or generate_tracking_id("sync")
        sync_start = self.clock()

        if self.is_syncing:
            logger.warning(f"[{tracking_id}] {self.source.source_tag} sync already in progress, skipping")
            return self._result(tracking_id, sync_start, success=False, error="Sync already in progress")

        self.is_syncing = True
        try:
            result = await self._sync(tracking_id, sync_start)
        finally:
            self.is_syncing = False

        self.last_result = result
        return result

    async def _sync(self, tracking_id: str, sync_start: datetime) -> Dict[str, Any]:
        since = await self._load_checkpoint(sync_start)
        logger.info(
            f"[{tracking_id}] {self.source.source_tag} sync started "
            f"(since={since.isoformat()}, limit={self.max_leads_per_sync})"
        )

        try:
            records = await self.source.fetch_recent(since, self.max_leads_per_sync)
        except Exception as e:
            logger.error(f"[{tracking_id}] {self.source.source_tag} fetch failed: {e}", exc_info=True)
            return self._result(tracking_id, sync_start, success=False, error=str(e))

        if not records:
            await self._save_checkpoint(sync_start, tracking_id)
            logger.info(f"[{tracking_id}] No new {self.source.source_tag} leads")
            return self._result(tracking_id, sync_start, message="No new leads found")

        created = 0
        updated = 0
        error_details: List[Dict[str, Any]] = []

        for raw in records:
            external_id = _record_external_id(raw)
            try:
                outcome = await self.intake.ingest(raw, self.source.source_tag, tracking_id)
            except Exception as e:
                logger.error(f"[{tracking_id}] Failed to reconcile {self.source.source_tag} record {external_id}: {e}")
                error_details.append({"external_id": external_id, "error": str(e)})
                continue

            if outcome["operation"] == "created":
                created += 1
            else:
                updated += 1

        await self._save_checkpoint(sync_start, tracking_id)

        result = self._result(
            tracking_id,
            sync_start,
            processed=created + updated,
            created=created,
            updated=updated,
            error_details=error_details,
        )
        logger.info(
            f"[{tracking_id}] {self.source.source_tag} sync done: {result['processed']} processed, "
            f"{created} created, {updated} updated, {result['errors']} errors"
        )
        return result

    async def _load_checkpoint(self, sync_start: datetime) -> datetime:
        try:
            last = await self.checkpoints.get_last_sync_time(self.sync_key)
        except Exception as e:
            logger.error(f"Could not read {self.sync_key} checkpoint, using lookback window: {e}")
            last = None

        if last is None:
            last = sync_start - self.initial_lookback
        self.last_sync_time = last
        return last

    async def _save_checkpoint(self, sync_start: datetime, tracking_id: str) -> None:
        try:
            await self.checkpoints.set_last_sync_time(self.sync_key, sync_start)
        except Exception as e:
            logger.error(f"[{tracking_id}] Could not save {self.sync_key} checkpoint: {e}", exc_info=True)
            return
        self.last_sync_time = sync_start

    @staticmethod
    def _result(
        tracking_id: str,
        sync_time: datetime,
        success: bool = True,
        processed: int = 0,
        created: int = 0,
        updated: int = 0,
        error_details: Optional[List[Dict[str, Any]]] = None,
        message: Optional[str] = None,
        error: Optional[str] = None
    ) -> Dict[str, Any]:
        error_details = error_details or []
        return {
            "success": success,
            "tracking_id": tracking_id,
            "processed": processed,
            "created": created,
            "updated": updated,
            "errors": len(error_details),
            "error_details": error_details,
            "sync_time": sync_time,
            "message": message,
            "error": error,
        }

    async def trigger_manual_sync(self) -> Dict[str, Any]:
        """Operator-initiated cycle outside the timer."""
        tracking_id = generate_tracking_id("manual_sync")
        logger.info(f"[{tracking_id}] Manual {self.source.source_tag} sync requested")
        return await self.perform_sync(tracking_id)

    # ========================================
    # SCHEDULING
    # ========================================

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.get_job(self.scheduler_job_id) is not None

    def start(self) -> bool:
        if self.scheduler is None:
            raise RuntimeError("PollingReconciler has no scheduler")
        if self.is_running:
            logger.warning(f"{self.source.source_tag} polling already running")
            return False

        self.scheduler.add_job(
            self._run_scheduled_sync,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=self.scheduler_job_id,
            name=f"{self.source.source_tag} polling",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"✅ {self.source.source_tag} polling started (every {self.interval_minutes} min)")
        return True

    def stop(self) -> bool:
        if not self.is_running:
            logger.warning(f"{self.source.source_tag} polling is not running")
            return False

        self.scheduler.remove_job(self.scheduler_job_id)
        logger.info(f"{self.source.source_tag} polling stopped")
        return True

    async def _run_scheduled_sync(self) -> None:
        try:
            await self.perform_sync()
        except Exception as e:
            logger.error(f"Scheduled {self.source.source_tag} sync failed: {e}", exc_info=True)

    def get_status(self) -> Dict[str, Any]:
        next_run_time = None
        if self.is_running:
            next_run_time = getattr(self.scheduler.get_job(self.scheduler_job_id), "next_run_time", None)

        return {
            "source": self.source.source_tag,
            "is_running": self.is_running,
            "is_syncing": self.is_syncing,
            "last_sync_time": self.last_sync_time,
            "interval_minutes": self.interval_minutes,
            "max_leads_per_sync": self.max_leads_per_sync,
            "next_run_time": next_run_time,
            "last_result": self.last_result,
        }
