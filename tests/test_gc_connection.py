from pathlib import Path
from types import SimpleNamespace

from flames.GCConnection_hlpr import GCConnection


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket, self.name = bucket, name

    def upload_from_filename(self, filename, content_type=None):
        self.bucket.objects[self.name] = Path(filename).read_bytes()

    def download_to_filename(self, filename):
        with open(filename, "wb") as f:
            f.write(self.bucket.objects[self.name])


class FakeBucket:
    def __init__(self):
        self.objects = {}

    def blob(self, name):
        return FakeBlob(self, name)


class FakeStorageClient:
    def __init__(self):
        self.buckets = {}

    def bucket(self, name):
        return self.buckets.setdefault(name, FakeBucket())


class FakeBuildClient:
    def __init__(self):
        self.builds = []

    def create_build(self, project_id, build):
        self.builds.append((project_id, build))
        return SimpleNamespace(metadata=SimpleNamespace(build=SimpleNamespace(id="b-123")))


class FakeResponse:
    def __init__(self, ok, payload=None):
        self.ok = ok
        self._payload = payload or {}

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        return self.response


def _conn():
    conn = GCConnection("proj", "europe-west1", "bucket", credentials=object())
    conn._storage_client = FakeStorageClient()
    conn._build_client = FakeBuildClient()
    return conn


def test_upload_and_download_roundtrip(tmp_path):
    conn = _conn()
    archive = tmp_path / "job.tar.gz"
    archive.write_bytes(b"archive-bytes")

    assert conn.upload(archive, "job.tar.gz") == "gs://bucket/job.tar.gz"
    restored = conn.download("job.tar.gz", tmp_path / "out" / "job.tar.gz")
    assert restored.read_bytes() == b"archive-bytes"


def test_submit_build_converts_spec():
    conn = _conn()
    spec = {
        "source": {"bucket": "bucket", "object": "job.tar.gz"},
        "steps": [{"name": "gcr.io/cloud-builders/docker", "args": ["build", "-t", "img", "."]}],
    }

    assert conn.submit_build(spec) == "b-123"
    [(project, build)] = conn._build_client.builds
    assert project == "proj"
    assert build.source.storage_source.bucket == "bucket"
    assert build.source.storage_source.object_ == "job.tar.gz"
    assert list(build.steps[0].args) == ["build", "-t", "img", "."]


def test_service_status_reads_cloud_run_url():
    conn = _conn()
    conn._session = FakeSession(FakeResponse(True, {"status": {"url": "https://svc.a.run.app"}}))

    assert conn.get_service_status("flames-abc") == {"ready": True, "url": "https://svc.a.run.app"}
    assert conn._session.urls == [
        "https://run.googleapis.com/v1/projects/proj/locations/europe-west1/services/flames-abc"
    ]


def test_service_status_not_ready():
    conn = _conn()
    conn._session = FakeSession(FakeResponse(True, {"status": {}}))
    assert conn.get_service_status("s") == {"ready": False, "url": None}

    conn._session = FakeSession(FakeResponse(False))
    assert conn.get_service_status("s") == {"ready": False, "url": None}
