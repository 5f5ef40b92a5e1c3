# flames/packaging.py

import logging
import shutil
import tarfile
import tempfile
import threading
from pathlib import Path
from typing import Dict

from flames.errors import NotFoundError
from flames.job_service import JobService, JobStatus
from flames.workspaces import WorkArea

logger = logging.getLogger("flames_backend")


def create_archive(work_dir: Path, archive_path: Path) -> Path:
    """gzip'd tar of everything under `work_dir`, members relative to it."""
    work_dir = Path(work_dir)
    archive_path = Path(archive_path)
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive_path, "w:gz") as tar:
        for child in sorted(work_dir.iterdir(), key=lambda p: p.name):
            tar.add(child, arcname=child.name)
    logger.info(f"[Package] Archive created: {archive_path} ({archive_path.stat().st_size} bytes)")
    return archive_path


def safe_extract(archive_path: Path, dest_dir: Path) -> Path:
    """
    Extract a job archive into `dest_dir`. Links, devices, absolute names and
    anything resolving outside `dest_dir` are refused.
    """
    dest = Path(dest_dir).resolve()
    dest.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive_path, "r:gz") as tar:
        members = tar.getmembers()
        for member in members:
            if not (member.isfile() or member.isdir()):
                raise ValueError(f"Refusing to extract special member '{member.name}'")
            target = (dest / member.name).resolve()
            if target != dest and not target.is_relative_to(dest):
                raise ValueError(f"Refusing to extract '{member.name}' outside the destination")
        tar.extractall(dest, members=members, filter="data")
    return dest


class PackagingService:
    """
    generated -> packaging -> packaged | failed

    Cleanup: the working directory and local archive are removed only after
    a successful upload. A failed packaging run keeps both so it can be retried.
    """

    def __init__(self, jobs: JobService, work_area: WorkArea, artifact_store):
        self.jobs = jobs
        self.work_area = work_area
        self.artifact_store = artifact_store
        self._locks_guard = threading.Lock()
        self._restore_locks: Dict[str, threading.Lock] = {}

    def package_and_upload(self, job_id: str) -> str:
        if not self.work_area.exists(job_id):
            # status left alone so the job can be retried by hand
            raise NotFoundError(f"Project directory for job {job_id} not found.")

        self.jobs.transition(job_id, JobStatus.PACKAGING, "Packaging project files...")
        try:
            archive = create_archive(self.work_area.work_dir(job_id), self.work_area.archive_path(job_id))
            self.jobs.transition(job_id, JobStatus.PACKAGING, "Uploading project archive...")
            artifact_ref = self.artifact_store.upload(archive, self.work_area.archive_key(job_id))
            self.jobs.transition(job_id, JobStatus.PACKAGED, "Project packaged.", artifactRef=artifact_ref)
        except Exception as e:
            logger.exception(f"[Package] job={job_id} packaging failed")
            self.jobs.fail(job_id, f"Packaging failed: {e}")
            raise

        self.work_area.remove(job_id)
        self.work_area.remove_archive(job_id)
        logger.info(f"[Package] job={job_id} packaged as {artifact_ref}; local copies removed")
        return artifact_ref

    def _restore_lock(self, job_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._restore_locks.setdefault(job_id, threading.Lock())

    def restore(self, job_id: str) -> Path:
        """
        Re-materialize an evicted working directory from the job's archive.

        Concurrent callers for the same job are serialized; whoever comes
        second finds the directory in place and returns it. Each run
        downloads and extracts into its own scratch directory.
        """
        work_dir = self.work_area.work_dir(job_id)
        with self._restore_lock(job_id):
            if work_dir.is_dir():
                return work_dir

            job = self.jobs.get(job_id)
            if not job.get("artifactRef"):
                raise NotFoundError(f"Project directory for job {job_id} not found and no archive exists.")

            self.work_area.work_root.mkdir(parents=True, exist_ok=True)
            scratch = Path(tempfile.mkdtemp(prefix=f".restore-{job_id}-", dir=self.work_area.work_root))
            try:
                archive = self.artifact_store.download(self.work_area.archive_key(job_id), scratch / "archive.tar.gz")
                staging = safe_extract(archive, scratch / "project")
                if work_dir.is_dir():
                    logger.info(f"[Package] job={job_id} working directory reappeared; discarding restored copy")
                else:
                    staging.replace(work_dir)
            finally:
                shutil.rmtree(scratch, ignore_errors=True)

        logger.info(f"[Package] job={job_id} working directory restored from {job['artifactRef']}")
        return work_dir
