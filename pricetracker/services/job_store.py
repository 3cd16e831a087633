"""
Job store: persistence and state machine for scrape jobs.
"""

from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricetracker.core.exceptions import InvalidJobTransitionError, UnknownJobError
from pricetracker.core.identity import Clock, IdFactory, random_ids, utcnow
from pricetracker.core.logging import get_logger
from pricetracker.models.enums import JOB_TRANSITIONS, JobStatus, JobType
from pricetracker.models.scrape_job import ScrapeJob

logger = get_logger(__name__)


class JobStore:
    """Create jobs and move them through pending -> running -> completed | failed."""

    def __init__(self, id_factory: IdFactory = random_ids, clock: Clock = utcnow):
        self.id_factory = id_factory
        self.clock = clock

    async def create(
        self,
        job_type: Union[JobType, str],
        db: AsyncSession,
        source_id: Optional[UUID] = None,
        query: Optional[str] = None,
    ) -> ScrapeJob:
        """Create a pending job."""
        job = ScrapeJob(
            id=self.id_factory(),
            source_id=source_id,
            status=JobStatus.PENDING.value,
            job_type=JobType(job_type).value,
            query=query,
            result=None,
            cancel_requested=False,
            created_at=self.clock(),
        )
        db.add(job)
        await db.flush()

        logger.info(
            "Job created",
            extra={"job_id": str(job.id), "job_type": job.job_type, "source_id": str(source_id) if source_id else None},
        )
        return job

    async def get(self, job_id: UUID, db: AsyncSession) -> ScrapeJob:
        """
        Get job by ID.

        Raises:
            UnknownJobError: If no job has this ID
        """
        job = await db.get(ScrapeJob, job_id)
        if job is None:
            raise UnknownJobError(str(job_id))
        return job

    async def list_jobs(
        self,
        db: AsyncSession,
        job_type: Optional[Union[JobType, str]] = None,
        limit: int = 50,
    ) -> List[ScrapeJob]:
        """Recent jobs, newest first."""
        query = select(ScrapeJob)
        if job_type is not None:
            query = query.where(ScrapeJob.job_type == JobType(job_type).value)
        query = query.order_by(ScrapeJob.created_at.desc(), ScrapeJob.id).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def start(self, job_id: UUID, db: AsyncSession) -> ScrapeJob:
        job = await self._transition(job_id, JobStatus.RUNNING, db)
        job.started_at = self.clock()
        await db.flush()
        return job

    async def complete(self, job_id: UUID, result: Dict[str, Any], db: AsyncSession) -> ScrapeJob:
        job = await self._transition(job_id, JobStatus.COMPLETED, db)
        job.result = result
        job.completed_at = self.clock()
        await db.flush()
        return job

    async def fail(
        self,
        job_id: UUID,
        error: str,
        db: AsyncSession,
        result: Optional[Dict[str, Any]] = None,
    ) -> ScrapeJob:
        """Mark a job failed with a job-level error message."""
        job = await self._transition(job_id, JobStatus.FAILED, db)
        job.result = {**(result or {}), "error": error}
        job.completed_at = self.clock()
        await db.flush()

        logger.warning(
            "Job failed",
            extra={"job_id": str(job.id), "job_type": job.job_type, "error": error},
        )
        return job

    async def request_cancel(self, job_id: UUID, db: AsyncSession) -> ScrapeJob:
        """
        Ask a pending or running job to stop before its next source.

        Raises:
            UnknownJobError: If the job does not exist
            InvalidJobTransitionError: If the job already finished
        """
        job = await self.get(job_id, db)
        if job.status not in (JobStatus.PENDING.value, JobStatus.RUNNING.value):
            raise InvalidJobTransitionError(str(job.id), job.status, "cancelled")
        job.cancel_requested = True
        await db.flush()

        logger.info("Job cancellation requested", extra={"job_id": str(job.id)})
        return job

    async def is_cancel_requested(self, job_id: UUID, db: AsyncSession) -> bool:
        result = await db.execute(select(ScrapeJob.cancel_requested).where(ScrapeJob.id == job_id))
        return bool(result.scalar_one_or_none())

    async def _transition(self, job_id: UUID, target: JobStatus, db: AsyncSession) -> ScrapeJob:
        job = await self.get(job_id, db)
        current = JobStatus(job.status)
        if target not in JOB_TRANSITIONS[current]:
            raise InvalidJobTransitionError(str(job.id), current.value, target.value)

        job.status = target.value
        logger.debug(
            "Job transition",
            extra={"job_id": str(job.id), "from_status": current.value, "to_status": target.value},
        )
        return job


# Global instance
job_store = JobStore()
