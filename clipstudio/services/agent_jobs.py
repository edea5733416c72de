"""Owner-scoped access to asynchronous agent jobs."""

from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional

from .errors import InvalidStateError, NotFoundError, ValidationError
from .storage import AgentJobRecord, ClipRepository


LOGGER = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100


class AgentJobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: str) -> "AgentJobStatus":
        try:
            return cls(value.strip().lower())
        except ValueError as error:
            allowed = ", ".join(status.value for status in cls)
            raise ValidationError(f"Unknown job status '{value}' (expected one of: {allowed})") from error


class AgentJobManager:
    """Read and cancel agent jobs on behalf of their owner.

    A job that belongs to someone else is reported exactly like a job that
    does not exist.
    """

    def __init__(self, repository: ClipRepository) -> None:
        self._repository = repository

    def get(self, job_id: str, owner_id: str) -> AgentJobRecord:
        job = self._repository.get_agent_job(job_id, owner_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job

    def cancel(self, job_id: str, owner_id: str) -> AgentJobRecord:
        """Delete a queued job and return the record as it was."""

        job, deleted = self._repository.delete_agent_job_if_queued(job_id, owner_id)
        if job is None:
            raise NotFoundError("Job not found")
        if not deleted:
            LOGGER.info("Refusing to cancel job %s in status %s", job_id, job.status)
            raise InvalidStateError(
                "Can only cancel queued jobs. Processing jobs cannot be cancelled.",
                diagnostic=f"status={job.status}",
            )
        LOGGER.info("Cancelled queued job %s for user %s", job_id, owner_id)
        return job

    def list(
        self,
        owner_id: str,
        *,
        status: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[AgentJobRecord]:
        if not 1 <= int(limit) <= MAX_LIST_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIST_LIMIT}")
        status_filter = AgentJobStatus.parse(status).value if status else None
        return self._repository.list_agent_jobs(owner_id, status=status_filter, limit=int(limit))


__all__ = ["AgentJobManager", "AgentJobStatus"]
