from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from flames.errors import NotFoundError

logger = logging.getLogger("flames_backend")

METADATA_DIRNAME = ".flames"
IGNORED_NAMES = {"node_modules"}

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class WorkArea:
    """
    Local disk layout for jobs:

        <work_root>/<job_id>/                 working directory (job-exclusive)
        <work_root>/<job_id>/.flames/         index tree + vector index
        <artifact_root>/<job_id>.tar.gz       packaged archive before upload
    """

    def __init__(self, work_root: Path, artifact_root: Path, templates_root: Path, default_template: str):
        self.work_root = Path(work_root).resolve()
        self.artifact_root = Path(artifact_root).resolve()
        self.templates_root = Path(templates_root).resolve()
        self.default_template = default_template

    def _check_id(self, job_id: str) -> str:
        if not job_id or not _JOB_ID_RE.match(job_id):
            raise ValueError(f"Invalid job id: {job_id!r}")
        return job_id

    def work_dir(self, job_id: str) -> Path:
        return self.work_root / self._check_id(job_id)

    def metadata_dir(self, job_id: str) -> Path:
        return self.work_dir(job_id) / METADATA_DIRNAME

    def index_tree_path(self, job_id: str) -> Path:
        return self.metadata_dir(job_id) / "index.json"

    def vector_index_path(self, job_id: str) -> Path:
        return self.metadata_dir(job_id) / "vectors.json"

    def archive_path(self, job_id: str) -> Path:
        return self.artifact_root / f"{self._check_id(job_id)}.tar.gz"

    def archive_key(self, job_id: str) -> str:
        return f"{self._check_id(job_id)}.tar.gz"

    def exists(self, job_id: str) -> bool:
        return self.work_dir(job_id).is_dir()

    def template_dir(self, template: str | None) -> Path:
        """Requested template if it exists, else the default one."""
        if template and re.match(r"^[A-Za-z0-9_.-]+$", template):
            candidate = self.templates_root / template
            if candidate.is_dir():
                return candidate
            logger.info(f"[Work] Template '{template}' not found, using '{self.default_template}'")
        return self.templates_root / self.default_template

    def materialize(self, job_id: str, template: str | None) -> tuple[Path, bool]:
        """
        Ensure the job's working directory exists. An existing directory is
        reused as-is. Returns (path, created).
        """
        work_dir = self.work_dir(job_id)
        if work_dir.is_dir():
            logger.info(f"[Work] Found existing work directory for job {job_id}. Reusing it.")
            return work_dir, False

        template_dir = self.template_dir(template)
        if not template_dir.is_dir():
            raise NotFoundError(f'Template "{template_dir.name}" not found. Please check template installation.')

        work_dir.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(template_dir, work_dir, ignore=shutil.ignore_patterns(*IGNORED_NAMES))
        logger.info(f"[Work] Copied template '{template_dir.name}' to '{work_dir}'")
        return work_dir, True

    def remove(self, job_id: str) -> None:
        shutil.rmtree(self.work_dir(job_id), ignore_errors=True)

    def remove_archive(self, job_id: str) -> None:
        self.archive_path(job_id).unlink(missing_ok=True)


def iter_project_files(work_dir: Path):
    """
    Yield (relative posix path, absolute path) for every project file,
    dot-files included, skipping node_modules and the .flames metadata.
    """
    work_dir = Path(work_dir)
    for path in sorted(work_dir.rglob("*")):
        rel = path.relative_to(work_dir)
        if any(part in IGNORED_NAMES or part == METADATA_DIRNAME for part in rel.parts):
            continue
        if path.is_file():
            yield rel.as_posix(), path
