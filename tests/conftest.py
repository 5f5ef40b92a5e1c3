"""
Pytest fixtures for the flames backend.

External collaborators are replaced by small in-process fakes; the document
store is the real SQLAlchemy store on a throwaway SQLite file.
"""

import json
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from langchain_core.messages import SystemMessage

from flames.backend import Backend
from flames.document_store import SqlDocumentStore
from flames.generation_client import GenerationClient
from flames.google_helpers import create_session_factory
from flames.job_runner import JobGuard
from flames.job_service import JobService, JobStatus
from flames.workspaces import WorkArea


class OverloadError(Exception):
    status_code = 503


def modifications_json(*mods) -> str:
    """mods: (path, type, content) triples -> provider answer text."""
    out = []
    for path, kind, content in mods:
        key = "newContent" if kind == "REPLACE_CONTENT" else "content"
        out.append({"filePath": path, "action": {"type": kind, key: content}})
    return json.dumps({"modifications": out})


def _prompt_text(messages) -> str:
    if isinstance(messages, str):
        return messages
    return "\n".join(str(m.content) for m in messages)


class ScriptedLLM:
    """
    Generation provider double. Full generation calls (the ones carrying a
    system message) consume `script` in order; items that are exceptions are
    raised. Every other call is routed by prompt text through `answers`:
    the first key found in the prompt wins.
    """

    def __init__(self, script: Optional[List[Any]] = None, answers: Optional[Dict[str, Any]] = None):
        self.script = list(script or [])
        self.answers = answers or {}
        self.calls: List[Any] = []

    def generate(self, messages, want_structured: bool = False) -> str:
        self.calls.append(messages)
        is_generation = not isinstance(messages, str) and any(isinstance(m, SystemMessage) for m in messages)
        if is_generation:
            item = self.script.pop(0)
        else:
            text = _prompt_text(messages)
            item = next((v for k, v in self.answers.items() if k in text), "{}")
        if isinstance(item, Exception):
            raise item
        return item if isinstance(item, str) else json.dumps(item)

    @property
    def generation_calls(self) -> List[Any]:
        return [c for c in self.calls if not isinstance(c, str) and any(isinstance(m, SystemMessage) for m in c)]

    def prompts_containing(self, needle: str) -> List[str]:
        return [_prompt_text(c) for c in self.calls if needle in _prompt_text(c)]


class KeywordEmbedder:
    """Bag-of-keywords vectors; deterministic and easy to reason about in ranking tests."""

    VOCAB = ("button", "header", "footer", "dark", "app", "style")

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[List[str]] = []

    def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return [[float(t.lower().count(w)) for w in self.VOCAB] for t in texts]


class LocalArtifactStore:
    def __init__(self, root: Path, bucket: str = "test-bucket", fail: bool = False):
        self.root = Path(root)
        self.bucket = bucket
        self.fail = fail
        self.root.mkdir(parents=True, exist_ok=True)

    def upload(self, local_archive: Path, key: str) -> str:
        if self.fail:
            raise RuntimeError("upload refused")
        shutil.copyfile(local_archive, self.root / key)
        return f"gs://{self.bucket}/{key}"

    def download(self, key: str, local_path: Path) -> Path:
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.root / key, local_path)
        return Path(local_path)


class FakePlatform:
    """
    Build platform double. `statuses` are returned by successive polls
    (exceptions are raised); once exhausted every poll reports not ready.
    """

    def __init__(self, statuses: Optional[List[Any]] = None, submit_error: Optional[Exception] = None):
        self.statuses = list(statuses or [])
        self.submit_error = submit_error
        self.specs: List[Dict[str, Any]] = []
        self.polls = 0

    def submit_build(self, spec: Dict[str, Any]) -> str:
        if self.submit_error:
            raise self.submit_error
        self.specs.append(spec)
        return f"build-{len(self.specs)}"

    def get_service_status(self, service: str) -> Dict[str, Any]:
        self.polls += 1
        if self.statuses:
            item = self.statuses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return {"ready": False, "url": None}


class DeferredRunner:
    """JobRunner stand-in: submissions are queued and only run on run_all()."""

    def __init__(self):
        self.guard = JobGuard()
        self.pending: List[tuple] = []

    def submit(self, job_id: str, stage: str, fn: Callable[[], object]):
        self.guard.acquire(job_id, stage)
        self.pending.append((job_id, stage, fn))

    def run_all(self) -> None:
        while self.pending:
            job_id, _stage, fn = self.pending.pop(0)
            try:
                fn()
            finally:
                self.guard.release(job_id)

    def shutdown(self, wait: bool = True) -> None:
        pass


# -----------------------
# Fixtures
# -----------------------

@pytest.fixture
def store(tmp_path):
    return SqlDocumentStore(create_session_factory(f"sqlite:///{tmp_path / 'flames-test.db'}"))


@pytest.fixture
def jobs(store):
    return JobService(store)


@pytest.fixture
def templates_root(tmp_path):
    root = tmp_path / "templates"
    base = root / "base"
    (base / "src").mkdir(parents=True)
    (base / "node_modules" / "left-pad").mkdir(parents=True)
    (base / "package.json").write_text('{"name": "app"}\n', encoding="utf-8")
    (base / "src" / "App.jsx").write_text("export default function App() { return <h1>app</h1>; }\n", encoding="utf-8")
    (base / "src" / "index.css").write_text("body { margin: 0; } /* style */\n", encoding="utf-8")
    (base / "node_modules" / "left-pad" / "index.js").write_text("module.exports = 1;\n", encoding="utf-8")
    return root


@pytest.fixture
def work_area(tmp_path, templates_root):
    return WorkArea(tmp_path / "work", tmp_path / "artifacts", templates_root, "base")


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def artifact_store(tmp_path):
    return LocalArtifactStore(tmp_path / "bucket")


@pytest.fixture
def make_generated_job(jobs, work_area):
    """Create a job already in `generated` with its working directory on disk."""

    def _make(prompt: str = "landing page") -> str:
        job_id = jobs.create(prompt, "base")
        jobs.transition(job_id, JobStatus.PROCESSING, "Setting up project files...")
        work_area.materialize(job_id, "base")
        jobs.transition(job_id, JobStatus.GENERATED, "Code generation complete.", filesReady=True, modifications=[])
        return job_id

    return _make


@pytest.fixture
def backend_parts(tmp_path, jobs, work_area, embedder, artifact_store):
    gen_llm = ScriptedLLM(
        script=[modifications_json(("src/App.jsx", "REPLACE_CONTENT", "export default () => <h1>Landing</h1>;\n"))],
        answers={"File Structure to Describe": {}},
    )
    edit_llm = ScriptedLLM()
    platform = FakePlatform(statuses=[{"ready": True, "url": "https://flames-app.a.run.app"}])
    runner = DeferredRunner()
    backend = Backend(
        jobs=jobs,
        work_area=work_area,
        runner=runner,
        generation_client=GenerationClient(gen_llm, sleep=lambda s: None),
        edit_client=GenerationClient(edit_llm, sleep=lambda s: None),
        embedder=embedder,
        artifact_store=artifact_store,
        platform=platform,
        project_id="test-project",
        region="us-central1",
        deploy_sleep=lambda s: None,
    )
    return {
        "backend": backend,
        "runner": runner,
        "gen_llm": gen_llm,
        "edit_llm": edit_llm,
        "platform": platform,
    }
