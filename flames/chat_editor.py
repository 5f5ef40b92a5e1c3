# flames/chat_editor.py

import logging
from pathlib import Path
from typing import Any, Dict, List

from flames.errors import NotFoundError, PreconditionError
from flames.job_runner import JobGuard
from flames.job_service import JobService, JobStatus
from flames.modifications import ModificationApplicator
from flames.workspaces import WorkArea

logger = logging.getLogger("flames_backend")


class ChatEditor:
    """
    Conversational single-file edit on a generated job:

        select file -> load it -> ask for a full replacement (with retrieved
        context) -> write -> re-embed -> refresh the file's description

    Runs synchronously under the job's guard, so it can't overlap a
    background stage of the same job.
    """

    def __init__(
        self,
        jobs: JobService,
        work_area: WorkArea,
        edit_client,
        semantic_index,
        index_store,
        guard: JobGuard,
        applicator: ModificationApplicator | None = None,
        top_k: int = 5,
    ):
        self.jobs = jobs
        self.work_area = work_area
        self.edit_client = edit_client
        self.semantic_index = semantic_index
        self.index_store = index_store
        self.guard = guard
        self.applicator = applicator or ModificationApplicator()
        self.top_k = top_k

    def _related_files(self, job_id: str, message: str, target: str):
        try:
            return self.semantic_index.retrieve_relevant_chunks(job_id, message, self.top_k, exclude=[target])
        except Exception as e:
            logger.warning(f"[Chat] job={job_id} retrieval failed, editing without context: {e}")
            return []

    def edit(self, job_id: str, message: str) -> List[Dict[str, Any]]:
        with self.guard.hold(job_id, "chat"):
            job = self.jobs.get(job_id)
            if job.get("status") != JobStatus.GENERATED.value:
                raise PreconditionError(
                    f"Job {job_id} cannot be edited while '{job.get('status')}'; edits need a generated job."
                )
            if not self.work_area.exists(job_id):
                raise NotFoundError(f"Project directory for job {job_id} not found.")

            work_dir = self.work_area.work_dir(job_id)
            project_index = self.index_store.load_or_build(job_id)

            selected = self.edit_client.select_file(message, project_index)
            path = self.applicator.resolve_target(work_dir, selected)
            target = path.relative_to(Path(work_dir).resolve()).as_posix()
            logger.info(f"[Chat] job={job_id} AI identified file to modify: {target}")
            if not path.is_file():
                raise NotFoundError(f"File not found: {target}")

            current = path.read_text(encoding="utf-8")
            related = self._related_files(job_id, message, target)

            modification = self.edit_client.replace_file(message, target, current, related)
            self.applicator.apply(work_dir, [modification])

            try:
                self.semantic_index.generate_and_store_embeddings(job_id, [(target, modification.content)])
            except Exception as e:
                logger.warning(f"[Chat] job={job_id} re-embedding {target} failed: {e}")

            description = self.edit_client.describe_file(target, modification.content)
            self.index_store.update_description(job_id, target, description)
            logger.info(f"[Chat] job={job_id} updated description for {target}")

            wire = [modification.to_wire()]
            self.jobs.update(job_id, modifications=wire, details=f"Edited {target}.")
            return wire
