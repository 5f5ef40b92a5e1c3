import logging
from pathlib import Path
from typing import Any, Dict

from google.auth.transport.requests import AuthorizedSession
from google.cloud import storage
from google.cloud.devtools import cloudbuild_v1

from flames.google_helpers import BUCKET_NAME, PROJECT_ID, REGION, _build_creds

logger = logging.getLogger("flames_backend")

CLOUD_RUN_SERVICE_URL = "https://run.googleapis.com/v1/projects/{project}/locations/{region}/services/{service}"


class GCConnection:
    """
    Google Cloud side of packaging and deployment.

    Artifact store:   upload(local_archive, key) -> "gs://bucket/key", download(key, local_path)
    Build platform:   submit_build(spec) -> build id, get_service_status(service) -> {"ready", "url"}

    Clients are created on first use so the process can start (and serve
    generation) without Cloud Build credentials.
    """

    def __init__(self, project_id: str = PROJECT_ID, region: str = REGION, bucket_name: str = BUCKET_NAME,
                 credentials=None) -> None:
        self.PROJECT_ID = project_id
        self.REGION = region
        self.BUCKET_NAME = bucket_name
        self._creds = credentials
        self._storage_client = None
        self._build_client = None
        self._session = None

    # -------- GCP auth / clients --------
    @property
    def creds(self):
        if self._creds is None:
            self._creds = _build_creds()
        return self._creds

    @property
    def storage_client(self) -> storage.Client:
        if self._storage_client is None:
            self._storage_client = storage.Client(project=self.PROJECT_ID, credentials=self.creds)
        return self._storage_client

    @property
    def build_client(self) -> cloudbuild_v1.CloudBuildClient:
        if self._build_client is None:
            self._build_client = cloudbuild_v1.CloudBuildClient(credentials=self.creds)
        return self._build_client

    @property
    def session(self) -> AuthorizedSession:
        if self._session is None:
            self._session = AuthorizedSession(self.creds)
        return self._session

    # -------- Storage helpers --------
    def upload(self, local_archive: Path, key: str) -> str:
        bucket = self.storage_client.bucket(self.BUCKET_NAME)
        blob = bucket.blob(key)
        blob.upload_from_filename(str(local_archive), content_type="application/gzip")
        logger.info(f"[GCS] Uploaded {local_archive} to gs://{self.BUCKET_NAME}/{key}")
        return f"gs://{self.BUCKET_NAME}/{key}"

    def download(self, key: str, local_path: Path) -> Path:
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        bucket = self.storage_client.bucket(self.BUCKET_NAME)
        bucket.blob(key).download_to_filename(str(local_path))
        logger.info(f"[GCS] Downloaded gs://{self.BUCKET_NAME}/{key} to {local_path}")
        return local_path

    # -------- Cloud Build / Cloud Run --------
    def submit_build(self, spec: Dict[str, Any]) -> str:
        """
        spec = {"source": {"bucket", "object"}, "steps": [{"name", "args"}], "images": [...]}
        Returns the Cloud Build id without waiting for the build.
        """
        build = cloudbuild_v1.Build(
            source=cloudbuild_v1.Source(
                storage_source=cloudbuild_v1.StorageSource(
                    bucket=spec["source"]["bucket"],
                    object_=spec["source"]["object"],
                )
            ),
            steps=[cloudbuild_v1.BuildStep(name=s["name"], args=list(s["args"])) for s in spec["steps"]],
            images=list(spec.get("images", [])),
        )
        operation = self.build_client.create_build(project_id=self.PROJECT_ID, build=build)
        build_id = operation.metadata.build.id
        logger.info(f"[CloudBuild] Submitted build {build_id}")
        return build_id

    def get_service_status(self, service: str) -> Dict[str, Any]:
        url = CLOUD_RUN_SERVICE_URL.format(project=self.PROJECT_ID, region=self.REGION, service=service)
        resp = self.session.get(url, timeout=30)
        if not resp.ok:
            return {"ready": False, "url": None}
        service_url = (resp.json().get("status") or {}).get("url")
        return {"ready": bool(service_url), "url": service_url}
