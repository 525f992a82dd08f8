"""
SQLAlchemy implementations of the storage interfaces.

Every method opens its own session from the injected async_sessionmaker and
commits before returning, so each call is one unit of work.
"""
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadflow.clock import Clock, utcnow
from leadflow.exceptions import DuplicateAgentError
from leadflow.models import Agent, Lead, Meeting, WorkflowJob, LeadProcessingLog, SyncStatus
from leadflow.schemas.lead import CanonicalLead
from leadflow.stores.base import (
    AgentStore,
    LeadStore,
    WorkflowStore,
    MeetingStore,
    SyncCheckpointStore,
    UpsertResult,
    new_lead_from_canonical,
    merge_canonical_into_lead,
)

logger = logging.getLogger(__name__)


class SqlLeadStore(LeadStore):

    def __init__(self, session_factory: async_sessionmaker, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    async def get(self, lead_id: UUID) -> Optional[Lead]:
        async with self.session_factory() as session:
            return await session.get(Lead, lead_id)

    async def find_by_external_id(self, source: str, external_id: str) -> Optional[Lead]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Lead).where(Lead.source == source, Lead.external_id == external_id)
            )
            return result.scalars().first()

    async def find_by_email(self, email: str) -> Optional[Lead]:
        if not email:
            return None
        async with self.session_factory() as session:
            result = await session.execute(
                select(Lead)
                .where(func.lower(Lead.email) == email.strip().lower())
                .order_by(Lead.created_at.asc())
            )
            return result.scalars().first()

    async def upsert(self, canonical: CanonicalLead) -> UpsertResult:
        try:
            return await self._upsert_once(canonical)
        except IntegrityError:
            # Concurrent insert of the same (source, external_id); the row exists now
            logger.warning(
                f"Upsert race on {canonical.source}:{canonical.external_id}, retrying as update"
            )
            return await self._upsert_once(canonical)

    async def _upsert_once(self, canonical: CanonicalLead) -> UpsertResult:
        now = self.clock()
        async with self.session_factory() as session:
            existing = None
            matched_by = None

            if canonical.external_id:
                result = await session.execute(
                    select(Lead).where(
                        Lead.source == canonical.source,
                        Lead.external_id == canonical.external_id
                    )
                )
                existing = result.scalars().first()
                if existing:
                    matched_by = "external_id"

            if existing is None and canonical.email:
                result = await session.execute(
                    select(Lead)
                    .where(func.lower(Lead.email) == canonical.email.lower())
                    .order_by(Lead.created_at.asc())
                )
                existing = result.scalars().first()
                if existing:
                    matched_by = "email"

            if existing is None:
                lead = new_lead_from_canonical(canonical, now)
                session.add(lead)
                await session.commit()
                return UpsertResult(lead=lead, operation="created")

            merge_canonical_into_lead(existing, canonical, now, matched_by)
            await session.commit()
            return UpsertResult(lead=existing, operation="updated", matched_by=matched_by)

    async def list_leads(
        self,
        status: Optional[str] = None,
        source: Optional[str] = None,
        offset: int = 0,
        limit: int = 50
    ) -> Tuple[List[Lead], int]:
        async with self.session_factory() as session:
            query = select(Lead)
            count_query = select(func.count(Lead.id))
            if status:
                query = query.where(Lead.status == status)
                count_query = count_query.where(Lead.status == status)
            if source:
                query = query.where(Lead.source == source)
                count_query = count_query.where(Lead.source == source)

            total = (await session.execute(count_query)).scalar() or 0
            result = await session.execute(
                query.order_by(Lead.created_at.desc()).offset(offset).limit(limit)
            )
            return list(result.scalars().all()), total

    async def update_status(self, lead_id: UUID, status: str) -> Optional[Lead]:
        async with self.session_factory() as session:
            lead = await session.get(Lead, lead_id)
            if not lead:
                return None
            lead.status = status
            lead.updated_at = self.clock()
            await session.commit()
            return lead

    async def mark_workflow_initialized(self, lead_id: UUID, when: datetime) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(Lead)
                .where(Lead.id == lead_id, Lead.workflow_initialized_at.is_(None))
                .values(workflow_initialized_at=when)
            )
            await session.commit()
            return result.rowcount == 1

    async def clear_workflow_initialized(self, lead_id: UUID) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Lead).where(Lead.id == lead_id).values(workflow_initialized_at=None)
            )
            await session.commit()

    async def assign_agent(self, lead_ids: List[UUID], agent_id: Optional[UUID]) -> int:
        if not lead_ids:
            return 0
        async with self.session_factory() as session:
            result = await session.execute(
                update(Lead)
                .where(Lead.id.in_(lead_ids))
                .values(assigned_agent_id=agent_id, updated_at=self.clock())
            )
            await session.commit()
            return result.rowcount


class SqlAgentStore(AgentStore):

    def __init__(self, session_factory: async_sessionmaker, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    async def create_agent(self, email: str, full_name: str, role: str = "agent") -> Agent:
        email = email.strip().lower()
        agent = Agent(
            email=email,
            full_name=full_name,
            role=role,
            is_active=True,
            created_at=self.clock(),
        )
        try:
            async with self.session_factory() as session:
                session.add(agent)
                await session.commit()
        except IntegrityError:
            raise DuplicateAgentError(email)
        return agent

    async def get(self, agent_id: UUID) -> Optional[Agent]:
        async with self.session_factory() as session:
            return await session.get(Agent, agent_id)

    async def list_agents(self, include_inactive: bool = False) -> List[Agent]:
        async with self.session_factory() as session:
            query = select(Agent)
            if not include_inactive:
                query = query.where(Agent.is_active.is_(True))
            result = await session.execute(query.order_by(Agent.created_at.asc()))
            return list(result.scalars().all())

    async def delete_agent(self, agent_id: UUID) -> bool:
        async with self.session_factory() as session:
            agent = await session.get(Agent, agent_id)
            if agent is None:
                return False
            await session.execute(
                update(Lead)
                .where(Lead.assigned_agent_id == agent_id)
                .values(assigned_agent_id=None, updated_at=self.clock())
            )
            await session.delete(agent)
            await session.commit()
            logger.info(f"Agent {agent_id} deleted")
            return True


class SqlWorkflowStore(WorkflowStore):

    def __init__(self, session_factory: async_sessionmaker, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    async def insert_jobs(self, jobs: List[Dict[str, Any]]) -> List[WorkflowJob]:
        now = self.clock()
        rows = [
            WorkflowJob(
                lead_id=job["lead_id"],
                workflow_type=job["workflow_type"],
                step=job["step"],
                scheduled_at=job["scheduled_at"],
                status="pending",
                retry_count=0,
                max_retries=job.get("max_retries", 3),
                job_metadata=dict(job.get("metadata") or {}),
                created_at=now,
                updated_at=now,
            )
            for job in jobs
        ]
        async with self.session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows

    async def get_due_jobs(self, now: datetime, limit: int) -> List[WorkflowJob]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkflowJob)
                .where(
                    WorkflowJob.status == "pending",
                    WorkflowJob.scheduled_at <= now,
                    WorkflowJob.retry_count < WorkflowJob.max_retries,
                )
                .order_by(WorkflowJob.scheduled_at.asc(), WorkflowJob.workflow_type.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def claim_job(self, job_id: UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(WorkflowJob)
                .where(WorkflowJob.id == job_id, WorkflowJob.status == "pending")
                .values(status="processing", updated_at=self.clock())
            )
            await session.commit()
            return result.rowcount == 1

    async def _update_job(self, job_id: UUID, **values) -> None:
        values["updated_at"] = self.clock()
        async with self.session_factory() as session:
            await session.execute(
                update(WorkflowJob).where(WorkflowJob.id == job_id).values(**values)
            )
            await session.commit()

    async def complete_job(self, job_id: UUID, executed_at: datetime) -> None:
        await self._update_job(
            job_id, status="completed", executed_at=executed_at, error_message=None
        )

    async def reschedule_job(
        self,
        job_id: UUID,
        retry_count: int,
        scheduled_at: datetime,
        error_message: str
    ) -> None:
        await self._update_job(
            job_id,
            status="pending",
            retry_count=retry_count,
            scheduled_at=scheduled_at,
            error_message=error_message,
        )

    async def fail_job(
        self,
        job_id: UUID,
        retry_count: int,
        error_message: str,
        executed_at: datetime
    ) -> None:
        await self._update_job(
            job_id,
            status="failed",
            retry_count=retry_count,
            error_message=error_message,
            executed_at=executed_at,
        )

    async def skip_pending_jobs(
        self,
        lead_id: UUID,
        workflow_type: str,
        meeting_id: Optional[str] = None
    ) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkflowJob).where(
                    WorkflowJob.lead_id == lead_id,
                    WorkflowJob.workflow_type == workflow_type,
                    WorkflowJob.status == "pending",
                )
            )
            jobs = result.scalars().all()
            now = self.clock()
            skipped = 0
            for job in jobs:
                if meeting_id is not None and (job.job_metadata or {}).get("meeting_id") != meeting_id:
                    continue
                job.status = "skipped"
                job.updated_at = now
                skipped += 1
            await session.commit()
            return skipped

    async def list_jobs_for_lead(self, lead_id: UUID) -> List[WorkflowJob]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkflowJob)
                .where(WorkflowJob.lead_id == lead_id)
                .order_by(WorkflowJob.scheduled_at.asc(), WorkflowJob.workflow_type.asc())
            )
            return list(result.scalars().all())

    async def record_event(
        self,
        lead_id: UUID,
        event_type: str,
        event_data: Dict[str, Any],
        success: bool = True
    ) -> None:
        async with self.session_factory() as session:
            session.add(LeadProcessingLog(
                lead_id=lead_id,
                event_type=event_type,
                event_data=event_data,
                success=success,
                created_at=self.clock(),
            ))
            await session.commit()


class SqlMeetingStore(MeetingStore):

    def __init__(self, session_factory: async_sessionmaker, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    async def get_by_external_id(self, external_event_id: str) -> Optional[Meeting]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Meeting).where(Meeting.external_event_id == external_event_id)
            )
            return result.scalars().first()

    async def get_or_create(self, lead_id: UUID, external_event_id: str, **fields) -> Tuple[Meeting, bool]:
        existing = await self.get_by_external_id(external_event_id)
        if existing:
            return existing, False

        now = self.clock()
        meeting = Meeting(
            lead_id=lead_id,
            external_event_id=external_event_id,
            status=fields.pop("status", "scheduled"),
            created_at=now,
            updated_at=now,
            **fields
        )
        try:
            async with self.session_factory() as session:
                session.add(meeting)
                await session.commit()
        except IntegrityError:
            # Same event delivered twice at once
            existing = await self.get_by_external_id(external_event_id)
            if existing is None:
                raise
            return existing, False
        return meeting, True

    async def find_scheduled_for_lead(self, lead_id: UUID) -> Optional[Meeting]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Meeting)
                .where(Meeting.lead_id == lead_id, Meeting.status == "scheduled")
                .order_by(Meeting.start_time.asc())
            )
            return result.scalars().first()

    async def update_status(
        self,
        meeting_id: UUID,
        status: str,
        cancellation_reason: Optional[str] = None
    ) -> Optional[Meeting]:
        async with self.session_factory() as session:
            meeting = await session.get(Meeting, meeting_id)
            if not meeting:
                return None
            meeting.status = status
            if cancellation_reason is not None:
                meeting.cancellation_reason = cancellation_reason
            meeting.updated_at = self.clock()
            await session.commit()
            return meeting

    async def list_for_lead(self, lead_id: UUID) -> List[Meeting]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Meeting)
                .where(Meeting.lead_id == lead_id)
                .order_by(Meeting.start_time.asc())
            )
            return list(result.scalars().all())


class SqlSyncCheckpointStore(SyncCheckpointStore):

    def __init__(self, session_factory: async_sessionmaker, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    async def get_last_sync_time(self, sync_key: str) -> Optional[datetime]:
        async with self.session_factory() as session:
            row = await session.get(SyncStatus, sync_key)
            return row.last_sync_time if row else None

    async def set_last_sync_time(self, sync_key: str, value: datetime) -> None:
        async with self.session_factory() as session:
            row = await session.get(SyncStatus, sync_key)
            if row is None:
                session.add(SyncStatus(
                    sync_key=sync_key, last_sync_time=value, updated_at=self.clock()
                ))
            else:
                row.last_sync_time = value
                row.updated_at = self.clock()
            await session.commit()
