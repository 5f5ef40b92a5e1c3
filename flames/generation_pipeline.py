# flames/generation_pipeline.py

import logging
from pathlib import Path
from typing import Any, Dict, List

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from flames.base_utils import BaseUtils
from flames.job_service import JobService, JobStatus
from flames.modifications import Modification, ModificationApplicator, modifications_to_wire
from flames.workspaces import WorkArea, iter_project_files
from flames import prompts

logger = logging.getLogger("flames_backend")


class GenerationPipeline(BaseUtils):
    """
    pending -> processing -> generated | failed

    run_generation() is meant to run as background work (JobRunner). It never
    raises once the job is in `processing`: every failure ends up in the job
    record as `failed` + details, and the working directory is removed.
    """

    def __init__(
        self,
        jobs: JobService,
        work_area: WorkArea,
        generation_client,
        semantic_index,
        index_store,
        applicator: ModificationApplicator | None = None,
    ):
        self.jobs = jobs
        self.work_area = work_area
        self.generation_client = generation_client
        self.semantic_index = semantic_index
        self.index_store = index_store
        self.applicator = applicator or ModificationApplicator()

    # -----------------------
    # Prompt
    # -----------------------

    def collect_files_content(self, work_dir: Path) -> str:
        chunks = []
        for rel, path in iter_project_files(work_dir):
            try:
                content = path.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                logger.debug(f"[Generate] skipping non-text file {rel}")
                continue
            chunks.append(f"--- FILE: {rel} ---\n{content}")
        return "\n\n".join(chunks)

    def build_messages(self, job: Dict[str, Any], work_dir: Path) -> List[BaseMessage]:
        user_prompt = self.unsafe_string_format(
            prompts.GENERATION_USER_PROMPT,
            user_prompt=job.get("prompt") or "",
            files_content=self.collect_files_content(work_dir),
        )
        return [SystemMessage(content=prompts.GENERATION_SYSTEM_PROMPT), HumanMessage(content=user_prompt)]

    # -----------------------
    # Best-effort post steps
    # -----------------------

    def _index_modified_files(self, job_id: str, modifications: List[Modification]) -> None:
        latest: Dict[str, str] = {}
        for mod in modifications:
            latest[mod.target_path] = mod.content
        try:
            self.semantic_index.generate_and_store_embeddings(job_id, list(latest.items()))
        except Exception as e:
            logger.warning(f"[Generate] job={job_id} embeddings failed, continuing without them: {e}")

    def _refresh_index_tree(self, job_id: str) -> None:
        try:
            self.index_store.regenerate(job_id, self.generation_client)
        except Exception as e:
            logger.warning(f"[Generate] job={job_id} could not create .flames/index.json: {e}")

    # -----------------------
    # Stage
    # -----------------------

    def run_generation(self, job_id: str) -> None:
        # Raises InvalidTransitionError if the job isn't pending; nothing to clean up then.
        job = self.jobs.transition(job_id, JobStatus.PROCESSING, "Setting up project files...")

        try:
            work_dir, created = self.work_area.materialize(job_id, job.get("template"))
            if created:
                self.jobs.transition(job_id, JobStatus.PROCESSING, "Template copied. Generating code with AI...")
            else:
                self.jobs.transition(job_id, JobStatus.PROCESSING, "Reusing existing files. Generating code with AI...")

            messages = self.build_messages(job, work_dir)

            def _on_retry(attempt: int, delay: float, _err: Exception) -> None:
                self.jobs.transition(
                    job_id, JobStatus.PROCESSING,
                    f"AI model is overloaded. Retrying in {delay:g}s... (retry {attempt})",
                )

            modifications = self.generation_client.generate_modifications(messages, on_retry=_on_retry)
            logger.info(f"[Generate] job={job_id} AI returned {len(modifications)} modifications")

            self.jobs.transition(job_id, JobStatus.PROCESSING, "Applying AI modifications...")
            applied = self.applicator.apply(work_dir, modifications)

            self.jobs.transition(job_id, JobStatus.PROCESSING, "Indexing project files...")
            self._index_modified_files(job_id, applied)
            self._refresh_index_tree(job_id)

            self.jobs.transition(
                job_id,
                JobStatus.GENERATED,
                "Code generation complete.",
                modifications=modifications_to_wire(applied),
                filesReady=True,
            )
            logger.info(f"[Generate] job={job_id} generated ({len(applied)} files)")
        except Exception as e:
            logger.exception(f"[Generate] job={job_id} failed")
            try:
                self.jobs.fail(job_id, f"Generation failed: {e}", filesReady=False)
            finally:
                self.work_area.remove(job_id)
