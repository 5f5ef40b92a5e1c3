import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from flames.errors import InvalidTransitionError, NotFoundError

logger = logging.getLogger("flames_backend")

JOBS_COLLECTION = "jobs"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    GENERATED = "generated"
    PACKAGING = "packaging"
    PACKAGED = "packaged"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


# from_status -> statuses it may be written to
JOB_TRANSITIONS: Dict[JobStatus, set] = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.GENERATED, JobStatus.FAILED},
    JobStatus.GENERATED: {JobStatus.PACKAGING, JobStatus.FAILED},
    JobStatus.PACKAGING: {JobStatus.PACKAGING, JobStatus.PACKAGED, JobStatus.FAILED},
    JobStatus.PACKAGED: {JobStatus.DEPLOYING, JobStatus.FAILED},
    JobStatus.DEPLOYING: {JobStatus.DEPLOYING, JobStatus.DEPLOYED, JobStatus.FAILED},
    JobStatus.DEPLOYED: {JobStatus.DEPLOYING},
    JobStatus.FAILED: {JobStatus.PENDING},
}

DEPLOYABLE_STATUSES = {JobStatus.GENERATED, JobStatus.PACKAGED, JobStatus.DEPLOYING, JobStatus.DEPLOYED}
FILES_VISIBLE_STATUSES = DEPLOYABLE_STATUSES
# a stage is running; nothing moves the job on if its process dies
IN_FLIGHT_STATUSES = {JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.PACKAGING, JobStatus.DEPLOYING}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def can_transition(from_status: str, to_status: str) -> bool:
    try:
        src, dst = JobStatus(from_status), JobStatus(to_status)
    except ValueError:
        return False
    return dst in JOB_TRANSITIONS[src]


class JobService:
    """
    Owns the durable job record. Every other component reads and writes jobs
    through here; the record is the only channel between the request that
    started a stage and the background task running it.
    """

    def __init__(self, store):
        self.store = store

    def create(self, prompt: str, template: str) -> str:
        now = _now_iso()
        job_id = self.store.create(
            JOBS_COLLECTION,
            {
                "prompt": prompt,
                "template": template,
                "status": JobStatus.PENDING.value,
                "createdAt": now,
                "updatedAt": now,
                "details": "Job queued.",
                "filesReady": False,
            },
        )
        logger.info(f"[Jobs] Created job {job_id} (template={template})")
        return job_id

    def get(self, job_id: str) -> Dict[str, Any]:
        try:
            return self.store.get(JOBS_COLLECTION, job_id)
        except NotFoundError:
            raise NotFoundError(f"Job {job_id} not found.") from None

    def transition(self, job_id: str, status: JobStatus, details: str, **fields) -> Dict[str, Any]:
        """
        Partial merge-write of `status`, `details` and any extra fields
        (dotted keys address the deployment sub-record).

        Raises InvalidTransitionError when `status` is not a permitted
        successor of the stored status.
        """
        status = JobStatus(status)
        current = self.get(job_id)["status"]
        if not can_transition(current, status):
            raise InvalidTransitionError(f"Job {job_id}: '{current}' -> '{status.value}' is not a valid transition")

        data = {"status": status.value, "details": details, "updatedAt": _now_iso()}
        data.update(fields)
        logger.info(f"[Jobs] job={job_id} {current} -> {status.value}: {details}")
        return self.store.merge(JOBS_COLLECTION, job_id, data)

    def fail(self, job_id: str, message: str, **fields) -> Dict[str, Any]:
        return self.transition(job_id, JobStatus.FAILED, message, **fields)

    def update(self, job_id: str, **fields) -> Dict[str, Any]:
        """Merge fields without touching the status."""
        if "status" in fields:
            raise ValueError("Use transition() to change a job's status")
        fields["updatedAt"] = _now_iso()
        return self.store.merge(JOBS_COLLECTION, job_id, fields)

    def list_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        jobs = self.store.query(JOBS_COLLECTION, order_by="createdAt", descending=True, limit=limit)
        return [
            {
                "id": job.get("id"),
                "prompt": job.get("prompt"),
                "template": job.get("template"),
                "status": job.get("status"),
                "createdAt": job.get("createdAt"),
                "updatedAt": job.get("updatedAt"),
            }
            for job in jobs
        ]

    def list_in_flight(self) -> List[Dict[str, Any]]:
        in_flight = {s.value for s in IN_FLIGHT_STATUSES}
        jobs = self.store.query(JOBS_COLLECTION, order_by="createdAt", descending=False, limit=None)
        return [job for job in jobs if job.get("status") in in_flight]
