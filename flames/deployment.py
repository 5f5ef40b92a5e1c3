# flames/deployment.py

import logging
import re
import time
from typing import Any, Callable, Dict, Tuple

from flames.errors import DeploymentTimeoutError, PreconditionError
from flames.job_service import DEPLOYABLE_STATUSES, JobService, JobStatus

logger = logging.getLogger("flames_backend")

POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_ATTEMPTS = 60
DEPLOY_TIMEOUT_MESSAGE = "Timeout waiting for service URL"

DOCKER_BUILDER = "gcr.io/cloud-builders/docker"
GCLOUD_BUILDER = "gcr.io/cloud-builders/gcloud"

_PROJECT_NUMBER_RE = re.compile(r"project[= ](\d+)")
_SERVICE_ACCOUNT_RE = re.compile(r"(\S+@\S+gserviceaccount\.com)")


def check_deployable(job: Dict[str, Any]) -> None:
    if job.get("status") not in {s.value for s in DEPLOYABLE_STATUSES}:
        raise PreconditionError(
            f"Job must be generated before it can be deployed. Current status: {job.get('status')}"
        )


def service_name_for(job_id: str) -> str:
    return f"flames-{job_id[:8]}".lower()


def split_gcs_ref(artifact_ref: str) -> Tuple[str, str]:
    m = re.match(r"^gs://([^/]+)/(.+)$", artifact_ref or "")
    if not m:
        raise ValueError(f"Not a gs:// artifact reference: {artifact_ref!r}")
    return m.group(1), m.group(2)


def translate_deploy_error(error: Exception) -> str:
    """
    Rewrite the platform errors we know how to fix into remediation text.
    Anything unrecognised is returned as-is.
    """
    message = str(error)

    if "Cloud Build API has not been used" in message:
        m = _PROJECT_NUMBER_RE.search(message)
        project = m.group(1) if m else "<your-project>"
        return (
            f"The Cloud Build API is not enabled for project {project}. Enable it at "
            f"https://console.developers.google.com/apis/api/cloudbuild.googleapis.com/overview?project={project} "
            f"then retry the deployment."
        )

    if "storage.objects.get" in message:
        m = _SERVICE_ACCOUNT_RE.search(message)
        account = m.group(1).rstrip(".,;:'\"") if m else "the Cloud Build service account"
        return (
            f"Permission denied: {account} cannot read the project archive. Grant it the "
            f"'Storage Object Viewer' role on the artifact bucket, then retry the deployment."
        )

    return message


class DeploymentOrchestrator:
    """
    packaged -> deploying -> deployed | failed

    run_deploy() submits a four-step pipeline (docker build, docker push,
    private Cloud Run deploy, public invoker binding) and then polls the
    service for its URL. `platform` is anything with submit_build(spec) and
    get_service_status(service) (GCConnection in production).
    """

    def __init__(
        self,
        jobs: JobService,
        platform,
        project_id: str,
        region: str,
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.jobs = jobs
        self.platform = platform
        self.project_id = project_id
        self.region = region
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.sleep = sleep

    def build_spec(self, job_id: str, artifact_ref: str) -> Dict[str, Any]:
        bucket, key = split_gcs_ref(artifact_ref)
        service = service_name_for(job_id)
        image = f"gcr.io/{self.project_id}/{service}:{job_id}"
        return {
            "source": {"bucket": bucket, "object": key},
            "steps": [
                {"name": DOCKER_BUILDER, "args": ["build", "-t", image, "."]},
                {"name": DOCKER_BUILDER, "args": ["push", image]},
                {
                    "name": GCLOUD_BUILDER,
                    "args": [
                        "run", "deploy", service,
                        "--image", image,
                        "--region", self.region,
                        "--platform", "managed",
                        "--no-allow-unauthenticated",
                        "--quiet",
                    ],
                },
                {
                    "name": GCLOUD_BUILDER,
                    "args": [
                        "run", "services", "add-iam-policy-binding", service,
                        "--region", self.region,
                        "--member=allUsers",
                        "--role=roles/run.invoker",
                        "--quiet",
                    ],
                },
            ],
        }

    def poll_for_url(self, job_id: str, service: str) -> str:
        for attempt in range(1, self.max_poll_attempts + 1):
            self.sleep(self.poll_interval)
            try:
                status = self.platform.get_service_status(service)
            except Exception as e:
                # service not created yet shows up as an error too
                logger.debug(f"[Deploy] job={job_id} poll {attempt} failed: {e}")
                continue
            if status and status.get("ready") and status.get("url"):
                logger.info(f"[Deploy] job={job_id} service ready after {attempt} polls: {status['url']}")
                return status["url"]
            logger.debug(f"[Deploy] job={job_id} poll {attempt}/{self.max_poll_attempts}: not ready")
        raise DeploymentTimeoutError(DEPLOY_TIMEOUT_MESSAGE)

    def run_deploy(self, job_id: str) -> None:
        job = self.jobs.transition(
            job_id, JobStatus.DEPLOYING, "Submitting build...",
            **{"deployment.buildRef": None, "deployment.url": None, "deployment.error": None},
        )
        try:
            service = service_name_for(job_id)
            build_ref = self.platform.submit_build(self.build_spec(job_id, job.get("artifactRef")))
            self.jobs.transition(
                job_id, JobStatus.DEPLOYING, "Build submitted. Waiting for the service URL...",
                **{"deployment.buildRef": build_ref},
            )
            url = self.poll_for_url(job_id, service)
            self.jobs.transition(job_id, JobStatus.DEPLOYED, "Deployment successful.", **{"deployment.url": url})
        except DeploymentTimeoutError as e:
            logger.error(f"[Deploy] job={job_id} {e}")
            self.jobs.fail(job_id, f"Deployment failed: {e}", **{"deployment.error": str(e)})
        except Exception as e:
            logger.exception(f"[Deploy] job={job_id} deployment failed")
            message = translate_deploy_error(e)
            self.jobs.fail(job_id, f"Deployment failed: {message}", **{"deployment.error": message})
