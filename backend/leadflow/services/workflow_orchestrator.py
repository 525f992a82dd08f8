"""
Workflow orchestrator.

Turns a new lead into a time-ordered batch of follow-up jobs, executes due
jobs through the step handlers, applies the fixed-delay retry policy and
rewrites the remaining schedule when a meeting gets booked.
"""
from datetime import datetime, timedelta
from typing import Dict, Any, Optional
from uuid import UUID
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from leadflow.clock import Clock, utcnow
from leadflow.exceptions import LeadNotFoundError
from leadflow.models import Meeting, WorkflowJob
from leadflow.services.notifications import NotificationSender
from leadflow.services.tracking import generate_workflow_tracking_id
from leadflow.services.workflow_actions import ActionContext, StepOutcome, get_step_handler
from leadflow.services.workflow_steps import (
    WorkflowType,
    WorkflowStep,
    JobStatus,
    INITIAL_PLAN,
    MEETING_PLAN,
)
from leadflow.stores.base import LeadStore, WorkflowStore, MeetingStore

logger = logging.getLogger(__name__)

_KNOWN_STEPS = {step.value for step in WorkflowStep}
_MEETING_STEPS = {planned.step.value for planned in MEETING_PLAN}


def serialize_job(job: WorkflowJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "lead_id": job.lead_id,
        "workflow_type": job.workflow_type,
        "step": job.step,
        "scheduled_at": job.scheduled_at,
        "status": job.status,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "error_message": job.error_message,
        "metadata": job.job_metadata or {},
        "executed_at": job.executed_at,
        "created_at": job.created_at,
    }


class WorkflowOrchestrator:
    """
    Schedules and executes per-lead workflow jobs.

    All state lives in the stores; the only in-memory state is the
    is_processing flag that keeps one batch running at a time in this process.
    Cross-process safety comes from WorkflowStore.claim_job.
    """

    SCHEDULER_JOB_ID = "workflow_processor"

    def __init__(
        self,
        lead_store: LeadStore,
        workflow_store: WorkflowStore,
        meeting_store: MeetingStore,
        notifier: NotificationSender,
        clock: Clock = utcnow,
        scheduler: Optional[AsyncIOScheduler] = None,
        batch_size: int = 50,
        processing_interval_minutes: int = 5,
        retry_delay: timedelta = timedelta(minutes=15),
        max_retries: int = 3,
        meeting_check_interval_minutes: int = 30,
        recurrence_limit: int = 96,
        init_guard_enabled: bool = True,
        booking_link: str = ""
    ):
        self.leads = lead_store
        self.workflows = workflow_store
        self.meetings = meeting_store
        self.notifier = notifier
        self.clock = clock
        self.scheduler = scheduler
        self.batch_size = batch_size
        self.processing_interval_minutes = processing_interval_minutes
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self.meeting_check_interval_minutes = meeting_check_interval_minutes
        self.recurrence_limit = recurrence_limit
        self.init_guard_enabled = init_guard_enabled
        self.booking_link = booking_link

        self.is_processing = False

    # ========================================
    # INITIALIZATION
    # ========================================

    async def initialize_workflow(self, lead_id: UUID, tracking_id: Optional[str] = None) -> bool:
        """
        Insert the initial job batch for a lead.

        Never raises: persistence failures are logged and reported as False so
        the webhook or poll cycle that triggered this keeps going.
        """
        tracking_id = tracking_id or generate_workflow_tracking_id(lead_id, "init")
        marked = False

        try:
            lead = await self.leads.get(lead_id)
            if lead is None:
                logger.warning(f"[{tracking_id}] Cannot initialize workflow: lead {lead_id} not found")
                return False

            now = self.clock()
            if self.init_guard_enabled:
                marked = await self.leads.mark_workflow_initialized(lead_id, now)
                if not marked:
                    logger.warning(
                        f"[{tracking_id}] Workflow already initialized for lead {lead_id}, skipping"
                    )
                    return True

            anchor = lead.created_at or now
            jobs = []
            for planned in INITIAL_PLAN:
                metadata: Dict[str, Any] = {"tracking_id": tracking_id}
                if planned.recurring:
                    metadata.update({
                        "recurring": True,
                        "interval_minutes": self.meeting_check_interval_minutes,
                        "occurrence": 1,
                    })
                jobs.append({
                    "lead_id": lead_id,
                    "workflow_type": planned.workflow_type.value,
                    "step": planned.step.value,
                    "scheduled_at": anchor + planned.offset,
                    "max_retries": self.max_retries,
                    "metadata": metadata,
                })

            await self.workflows.insert_jobs(jobs)

            if not self.init_guard_enabled:
                await self.leads.mark_workflow_initialized(lead_id, now)

        except Exception as e:
            logger.error(f"[{tracking_id}] Failed to initialize workflow for lead {lead_id}: {e}", exc_info=True)
            if marked:
                await self._release_init_marker(lead_id, tracking_id)
            return False

        logger.info(f"[{tracking_id}] Workflow initialized for lead {lead_id}: {len(jobs)} jobs scheduled")
        await self._audit(lead_id, "workflow_initialized", {
            "tracking_id": tracking_id,
            "jobs": [job["step"] for job in jobs],
        })
        return True

    async def _release_init_marker(self, lead_id: UUID, tracking_id: str) -> None:
        try:
            await self.leads.clear_workflow_initialized(lead_id)
        except Exception as e:
            logger.error(f"[{tracking_id}] Could not clear init marker for lead {lead_id}: {e}")

    # ========================================
    # JOB EXECUTION
    # ========================================

    async def process_pending_jobs(self, limit: Optional[int] = None) -> int:
        """
        Execute due jobs and return how many completed successfully.

        A call made while another batch is running in this process returns 0.
        Store failures while selecting the batch propagate to the caller.
        """
        if self.is_processing:
            logger.warning("Workflow batch already in progress, skipping this run")
            return 0

        self.is_processing = True
        try:
            now = self.clock()
            jobs = await self.workflows.get_due_jobs(now, limit if limit is not None else self.batch_size)
            if not jobs:
                logger.debug("No due workflow jobs")
                return 0

            logger.info(f"Processing {len(jobs)} due workflow jobs")
            processed = 0
            for job in jobs:
                if await self._process_job(job):
                    processed += 1

            logger.info(f"Workflow batch done: {processed}/{len(jobs)} jobs completed")
            return processed
        finally:
            self.is_processing = False

    async def _process_job(self, job: WorkflowJob) -> bool:
        tracking_id = generate_workflow_tracking_id(job.lead_id, job.workflow_type)

        try:
            claimed = await self.workflows.claim_job(job.id)
        except Exception as e:
            logger.error(f"[{tracking_id}] Could not claim job {job.id}: {e}", exc_info=True)
            return False

        if not claimed:
            logger.info(f"[{tracking_id}] Job {job.id} already claimed elsewhere")
            return False

        if job.step not in _KNOWN_STEPS:
            logger.error(f"[{tracking_id}] Job {job.id} has unknown step '{job.step}', failing it")
            await self._safe_fail(job, job.retry_count, f"Unknown workflow step: {job.step}", tracking_id)
            return False

        try:
            outcome = await self._execute_step(job, tracking_id)
        except Exception as e:
            logger.warning(f"[{tracking_id}] Job {job.id} ({job.step}) failed: {e}")
            await self._apply_retry_policy(job, e, tracking_id)
            return False

        try:
            await self.workflows.complete_job(job.id, self.clock())
        except Exception as e:
            # Action already ran; not retried
            logger.error(
                f"[{tracking_id}] Job {job.id} ({job.step}) ran but could not be marked completed, "
                f"stuck in processing: {e}",
                exc_info=True
            )
            await self._audit(job.lead_id, f"{job.step}_stuck", {
                "job_id": str(job.id),
                "tracking_id": tracking_id,
                "error": str(e),
            }, success=False)
            return False

        logger.info(f"[{tracking_id}] Job {job.id} ({job.step}) completed")
        await self._schedule_next_occurrence(job, outcome, tracking_id)
        await self._audit(job.lead_id, f"{job.step}_completed", {
            "job_id": str(job.id),
            "tracking_id": tracking_id,
            **outcome.details,
        })
        return True

    async def _execute_step(self, job: WorkflowJob, tracking_id: str) -> StepOutcome:
        lead = await self.leads.get(job.lead_id)
        if lead is None:
            raise LeadNotFoundError(job.lead_id)

        handler = get_step_handler(job.step)
        context = ActionContext(
            job=job,
            lead=lead,
            tracking_id=tracking_id,
            notifier=self.notifier,
            meetings=self.meetings,
            workflows=self.workflows,
            booking_link=self.booking_link,
            on_meeting_found=self._on_meeting_found,
        )
        return await handler(context)

    async def _on_meeting_found(self, lead_id: UUID, meeting: Meeting) -> bool:
        await self.handle_meeting_scheduled(lead_id, meeting)
        return True

    async def _apply_retry_policy(self, job: WorkflowJob, error: Exception, tracking_id: str) -> None:
        """Fixed-delay retry: back to pending until max_retries, then failed for good."""
        retry_count = job.retry_count + 1
        message = str(error) or error.__class__.__name__

        if retry_count < job.max_retries:
            scheduled_at = self.clock() + self.retry_delay
            try:
                await self.workflows.reschedule_job(job.id, retry_count, scheduled_at, message)
            except Exception as e:
                logger.error(f"[{tracking_id}] Could not reschedule job {job.id}: {e}", exc_info=True)
                return
            logger.info(
                f"[{tracking_id}] Job {job.id} retry {retry_count}/{job.max_retries} at {scheduled_at}"
            )
            return

        await self._safe_fail(job, retry_count, message, tracking_id)
        await self._audit(job.lead_id, f"{job.step}_failed", {
            "job_id": str(job.id),
            "tracking_id": tracking_id,
            "error": message,
        }, success=False)

    async def _safe_fail(self, job: WorkflowJob, retry_count: int, message: str, tracking_id: str) -> None:
        try:
            await self.workflows.fail_job(job.id, retry_count, message, self.clock())
        except Exception as e:
            logger.error(f"[{tracking_id}] Could not mark job {job.id} failed: {e}", exc_info=True)
            return
        logger.error(f"[{tracking_id}] Job {job.id} ({job.step}) permanently failed: {message}")

    async def _schedule_next_occurrence(
        self,
        job: WorkflowJob,
        outcome: StepOutcome,
        tracking_id: str
    ) -> Optional[WorkflowJob]:
        metadata = job.job_metadata or {}
        if not metadata.get("recurring"):
            return None
        if outcome.stop_recurrence:
            logger.info(f"[{tracking_id}] Recurrence of {job.step} stopped for lead {job.lead_id}")
            return None

        occurrence = int(metadata.get("occurrence", 1))
        if occurrence >= self.recurrence_limit:
            logger.info(
                f"[{tracking_id}] {job.step} reached recurrence limit ({self.recurrence_limit}) "
                f"for lead {job.lead_id}"
            )
            return None

        interval = int(metadata.get("interval_minutes", self.meeting_check_interval_minutes))
        next_metadata = dict(metadata, occurrence=occurrence + 1, tracking_id=tracking_id)
        try:
            inserted = await self.workflows.insert_jobs([{
                "lead_id": job.lead_id,
                "workflow_type": job.workflow_type,
                "step": job.step,
                "scheduled_at": self.clock() + timedelta(minutes=interval),
                "max_retries": job.max_retries,
                "metadata": next_metadata,
            }])
        except Exception as e:
            logger.error(f"[{tracking_id}] Could not schedule next {job.step}: {e}", exc_info=True)
            return None
        return inserted[0] if inserted else None

    # ========================================
    # STATE REACTIONS
    # ========================================

    async def handle_meeting_scheduled(
        self,
        lead_id: UUID,
        meeting: Meeting,
        tracking_id: Optional[str] = None
    ) -> int:
        """
        Replace the generic reminder sequence with meeting-anchored jobs.

        Pending reminder_sequence jobs are skipped, and reminders at -24h, -1h
        plus a Zoom link check at -2h are scheduled relative to the meeting
        start. Returns the number of jobs created; 0 when this meeting already
        has its jobs.
        """
        tracking_id = tracking_id or generate_workflow_tracking_id(lead_id, WorkflowType.MEETING_MONITOR.value)
        meeting_key = str(meeting.id)

        existing = await self.workflows.list_jobs_for_lead(lead_id)
        for job in existing:
            if (
                job.workflow_type == WorkflowType.MEETING_MONITOR.value
                and job.step in _MEETING_STEPS
                and (job.job_metadata or {}).get("meeting_id") == meeting_key
            ):
                logger.info(f"[{tracking_id}] Meeting {meeting_key} already has its jobs")
                return 0

        skipped = await self.workflows.skip_pending_jobs(lead_id, WorkflowType.REMINDER_SEQUENCE.value)

        now = self.clock()
        jobs = []
        for planned in MEETING_PLAN:
            scheduled_at = meeting.start_time + planned.offset
            if scheduled_at <= now:
                logger.info(f"[{tracking_id}] {planned.step.value} anchor {scheduled_at} already passed")
                continue
            jobs.append({
                "lead_id": lead_id,
                "workflow_type": planned.workflow_type.value,
                "step": planned.step.value,
                "scheduled_at": scheduled_at,
                "max_retries": self.max_retries,
                "metadata": {"meeting_id": meeting_key, "tracking_id": tracking_id},
            })

        if jobs:
            await self.workflows.insert_jobs(jobs)

        lead = await self.leads.get(lead_id)
        if lead is not None and lead.status in ("new", "contacted"):
            await self.leads.update_status(lead_id, "scheduled")

        logger.info(
            f"[{tracking_id}] Meeting {meeting_key} scheduled for lead {lead_id}: "
            f"{skipped} reminders skipped, {len(jobs)} meeting jobs created"
        )
        await self._audit(lead_id, "meeting_scheduled", {
            "meeting_id": meeting_key,
            "tracking_id": tracking_id,
            "skipped_reminders": skipped,
            "jobs_created": len(jobs),
        })
        return len(jobs)

    async def cancel_meeting_jobs(self, lead_id: UUID, meeting: Meeting) -> int:
        """Skip pending jobs anchored to a meeting that is no longer happening."""
        return await self.workflows.skip_pending_jobs(
            lead_id, WorkflowType.MEETING_MONITOR.value, meeting_id=str(meeting.id)
        )

    # ========================================
    # STATUS
    # ========================================

    async def get_workflow_status(self, lead_id: UUID) -> Dict[str, Any]:
        jobs = await self.workflows.list_jobs_for_lead(lead_id)
        counts = {status.value: 0 for status in JobStatus}
        for job in jobs:
            counts[job.status] = counts.get(job.status, 0) + 1

        return {
            "lead_id": lead_id,
            "total_jobs": len(jobs),
            **counts,
            "jobs": [serialize_job(job) for job in jobs],
        }

    # ========================================
    # CONTINUOUS PROCESSING
    # ========================================

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.get_job(self.SCHEDULER_JOB_ID) is not None

    def start_continuous_processing(self) -> bool:
        if self.scheduler is None:
            raise RuntimeError("WorkflowOrchestrator has no scheduler")
        if self.is_running:
            logger.warning("Workflow processor already running")
            return False

        self.scheduler.add_job(
            self._run_scheduled_batch,
            trigger=IntervalTrigger(minutes=self.processing_interval_minutes),
            id=self.SCHEDULER_JOB_ID,
            name="Workflow Job Processing",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"✅ Workflow processor started (every {self.processing_interval_minutes} min)")
        return True

    def stop_continuous_processing(self) -> bool:
        if not self.is_running:
            logger.warning("Workflow processor is not running")
            return False

        self.scheduler.remove_job(self.SCHEDULER_JOB_ID)
        logger.info("Workflow processor stopped")
        return True

    async def _run_scheduled_batch(self) -> None:
        try:
            await self.process_pending_jobs()
        except Exception as e:
            logger.error(f"Scheduled workflow batch failed: {e}", exc_info=True)

    def get_status(self) -> Dict[str, Any]:
        next_run_time: Optional[datetime] = None
        if self.is_running:
            next_run_time = getattr(self.scheduler.get_job(self.SCHEDULER_JOB_ID), "next_run_time", None)

        return {
            "is_running": self.is_running,
            "is_processing": self.is_processing,
            "batch_size": self.batch_size,
            "interval_minutes": self.processing_interval_minutes,
            "retry_delay_minutes": self.retry_delay.total_seconds() / 60,
            "next_run_time": next_run_time,
        }

    # ========================================
    # HELPERS
    # ========================================

    async def _audit(
        self,
        lead_id: UUID,
        event_type: str,
        event_data: Dict[str, Any],
        success: bool = True
    ) -> None:
        try:
            await self.workflows.record_event(lead_id, event_type, event_data, success=success)
        except Exception as e:
            logger.error(f"Failed to record '{event_type}' for lead {lead_id}: {e}")
