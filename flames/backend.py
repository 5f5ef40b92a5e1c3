# flames/backend.py
"""
Backend facade: the one object the HTTP layer talks to.

Every collaborator (document store, providers, artifact store, build
platform) is built once here and passed down explicitly; nothing below this
module reaches for a global client.
"""

import logging
from typing import Any, Dict, List, Optional

from flames.chat_editor import ChatEditor
from flames.deployment import DeploymentOrchestrator, check_deployable
from flames.errors import NotFoundError, PreconditionError
from flames.generation_client import GenerationClient
from flames.generation_pipeline import GenerationPipeline
from flames.job_runner import JobRunner
from flames.job_service import JobService, JobStatus
from flames.packaging import PackagingService
from flames.project_files import ProjectFiles
from flames.project_index import ProjectIndexStore
from flames.retrieval import SemanticIndex
from flames.workspaces import WorkArea, iter_project_files

logger = logging.getLogger("flames_backend")

INTERRUPTED_MESSAGE = "Interrupted by a server restart"


class Backend:

    def __init__(
        self,
        *,
        jobs: JobService,
        work_area: WorkArea,
        runner: JobRunner,
        generation_client: GenerationClient,
        edit_client: GenerationClient,
        embedder,
        artifact_store,
        platform,
        project_id: str,
        region: str,
        deploy_sleep=None,
    ):
        self.jobs = jobs
        self.work_area = work_area
        self.runner = runner
        self.guard = runner.guard

        self.semantic_index = SemanticIndex(work_area, embedder)
        self.index_store = ProjectIndexStore(work_area)
        self.pipeline = GenerationPipeline(
            jobs, work_area, generation_client, self.semantic_index, self.index_store
        )
        self.chat_editor = ChatEditor(
            jobs, work_area, edit_client, self.semantic_index, self.index_store, self.guard
        )
        self.packaging = PackagingService(jobs, work_area, artifact_store)
        self.files = ProjectFiles(jobs, work_area, self.packaging)

        deploy_kwargs = {"sleep": deploy_sleep} if deploy_sleep else {}
        self.deployer = DeploymentOrchestrator(jobs, platform, project_id, region, **deploy_kwargs)

    # -----------------------
    # Jobs
    # -----------------------

    def create_job(self, prompt: str, template: str) -> str:
        job_id = self.jobs.create(prompt, template)
        self.runner.submit(job_id, "generate", lambda: self.pipeline.run_generation(job_id))
        return job_id

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self.jobs.get(job_id)

    def list_projects(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self.jobs.list_recent(limit)

    def recover_interrupted_jobs(self) -> List[str]:
        """
        Fail jobs left mid-stage by a previous process so they can be
        retried. Jobs with work in flight here are left alone.
        """
        recovered = []
        for job in self.jobs.list_in_flight():
            job_id = job["id"]
            if self.guard.is_busy(job_id):
                continue
            fields = {}
            if job.get("status") == JobStatus.DEPLOYING.value:
                fields["deployment.error"] = INTERRUPTED_MESSAGE
            self.jobs.fail(job_id, INTERRUPTED_MESSAGE, **fields)
            recovered.append(job_id)
        if recovered:
            logger.warning(f"[Backend] Marked {len(recovered)} interrupted job(s) as failed: {recovered}")
        return recovered

    def retry_job(self, job_id: str) -> str:
        job = self.jobs.get(job_id)
        if job.get("status") != JobStatus.FAILED.value:
            raise PreconditionError(f"Only failed jobs can be retried. Current status: {job.get('status')}")
        with self.guard.hold(job_id, "retry"):
            self.jobs.transition(job_id, JobStatus.PENDING, "Job re-queued for generation.", filesReady=False)
        self.runner.submit(job_id, "generate", lambda: self.pipeline.run_generation(job_id))
        return job_id

    # -----------------------
    # Files / edits / indexing
    # -----------------------

    def list_files(self, job_id: str) -> List[Dict[str, Any]]:
        return self.files.list_files(job_id)

    def chat(self, job_id: str, message: str) -> List[Dict[str, Any]]:
        return self.chat_editor.edit(job_id, message)

    def reindex(self, job_id: str) -> int:
        self.jobs.get(job_id)
        with self.guard.hold(job_id, "embeddings"):
            if not self.work_area.exists(job_id):
                raise NotFoundError(f"Project directory for job {job_id} not found.")
            work_dir = self.work_area.work_dir(job_id)
            return self.semantic_index.reindex_all(job_id, iter_project_files(work_dir))

    # -----------------------
    # Deploy
    # -----------------------

    def deploy(self, job_id: str) -> Optional[str]:
        """
        Package synchronously if needed, then hand the deploy to the runner.
        Returns the artifact reference the deploy will use.
        """
        job = self.jobs.get(job_id)
        check_deployable(job)

        artifact_ref = job.get("artifactRef")
        if job.get("status") == JobStatus.GENERATED.value:
            with self.guard.hold(job_id, "package"):
                artifact_ref = self.packaging.package_and_upload(job_id)

        self.runner.submit(job_id, "deploy", lambda: self.deployer.run_deploy(job_id))
        return artifact_ref

    def shutdown(self) -> None:
        self.runner.shutdown(wait=False)


def build_backend() -> Backend:
    """Wire the production Backend from environment configuration."""
    from flames import google_helpers as cfg
    from flames.GCConnection_hlpr import GCConnection
    from flames.document_store import SqlDocumentStore
    from flames.llm_client import build_embedding_client, build_generation_llm

    store = SqlDocumentStore(cfg.create_session_factory())
    work_area = WorkArea(cfg.WORK_ROOT, cfg.ARTIFACT_ROOT, cfg.TEMPLATES_ROOT, cfg.DEFAULT_TEMPLATE)
    gc = GCConnection(cfg.PROJECT_ID, cfg.REGION, cfg.BUCKET_NAME)

    generation_llm = build_generation_llm(cfg.GENERATION_MODEL, cfg.PROJECT_ID, cfg.REGION, cfg.LLM_TIMEOUT)
    edit_llm = build_generation_llm(cfg.EDIT_MODEL, cfg.PROJECT_ID, cfg.REGION, cfg.LLM_TIMEOUT)
    embedder = build_embedding_client(cfg.EMBEDDING_MODEL, cfg.PROJECT_ID, cfg.REGION, cfg.LLM_TIMEOUT)

    logger.info(
        f"[Backend] generation={cfg.GENERATION_MODEL} edit={cfg.EDIT_MODEL} "
        f"embedding={cfg.EMBEDDING_MODEL} workers={cfg.CONCURRENT_INSTANCES}"
    )
    backend = Backend(
        jobs=JobService(store),
        work_area=work_area,
        runner=JobRunner(max_concurrent=cfg.CONCURRENT_INSTANCES),
        generation_client=GenerationClient(generation_llm),
        edit_client=GenerationClient(edit_llm),
        embedder=embedder,
        artifact_store=gc,
        platform=gc,
        project_id=cfg.PROJECT_ID,
        region=cfg.REGION,
    )
    backend.recover_interrupted_jobs()
    return backend
