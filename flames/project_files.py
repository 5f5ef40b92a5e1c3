# flames/project_files.py

import logging
from pathlib import Path
from typing import Any, Dict, List

from flames.errors import NotFoundError, PreconditionError
from flames.job_service import FILES_VISIBLE_STATUSES, JobService
from flames.workspaces import IGNORED_NAMES, WorkArea

logger = logging.getLogger("flames_backend")

LANGUAGE_BY_EXTENSION = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".json": "json",
    ".css": "css",
    ".scss": "scss",
    ".html": "html",
    ".md": "markdown",
    ".py": "python",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".svg": "xml",
}


def language_for(name: str) -> str:
    if name == "Dockerfile":
        return "dockerfile"
    return LANGUAGE_BY_EXTENSION.get(Path(name).suffix.lower(), "plaintext")


def build_file_nodes(directory: Path, root: Path | None = None) -> List[Dict[str, Any]]:
    """
    [{id, name, type, path, children}|{id, name, type, path, content, language}]
    Folders first, then files, each group by name.
    """
    root = root or directory
    entries = [
        e for e in Path(directory).iterdir()
        if e.name not in IGNORED_NAMES and not e.name.startswith(".")
    ]
    entries.sort(key=lambda e: (not e.is_dir(), e.name))

    nodes: List[Dict[str, Any]] = []
    for entry in entries:
        rel = entry.relative_to(root).as_posix()
        if entry.is_dir():
            nodes.append({
                "id": rel,
                "name": entry.name,
                "type": "folder",
                "path": rel,
                "children": build_file_nodes(entry, root),
            })
            continue
        try:
            content = entry.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            content = None
        node = {"id": rel, "name": entry.name, "type": "file", "path": rel, "language": language_for(entry.name)}
        if content is not None:
            node["content"] = content
        nodes.append(node)
    return nodes


class ProjectFiles:

    def __init__(self, jobs: JobService, work_area: WorkArea, packaging):
        self.jobs = jobs
        self.work_area = work_area
        self.packaging = packaging

    def list_files(self, job_id: str) -> List[Dict[str, Any]]:
        job = self.jobs.get(job_id)
        if job.get("status") not in {s.value for s in FILES_VISIBLE_STATUSES}:
            raise PreconditionError(f"Files are not available while the job is '{job.get('status')}'.")
        if job.get("filesReady") is False:
            raise PreconditionError("Files are not ready yet.")

        if not self.work_area.exists(job_id):
            if not job.get("artifactRef"):
                raise NotFoundError(f"Project directory for job {job_id} not found.")
            logger.info(f"[Files] job={job_id} working directory evicted, restoring from archive")
            self.packaging.restore(job_id)

        return build_file_nodes(self.work_area.work_dir(job_id))
