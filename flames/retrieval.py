# flames/retrieval.py

import json
import logging
import math
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from flames.errors import ExternalConfigError
from flames.workspaces import WorkArea

logger = logging.getLogger("flames_backend")

VectorIndex = Dict[str, List[float]]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    dot(a, b) / (|a| * |b|); 0 when either vector has zero norm or the
    lengths differ (vectors written by another embedding model).
    """
    if len(a) != len(b):
        return 0.0
    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


class SemanticIndex:
    """
    Per-job Vector Index (file path -> embedding), stored as JSON inside the
    job's working directory. Entries are overwritten when a path is indexed
    again and never pruned.
    """

    def __init__(self, work_area: WorkArea, embedder):
        self.work_area = work_area
        self.embedder = embedder

    def load(self, job_id: str) -> VectorIndex:
        """Raises FileNotFoundError / ValueError when there is no usable index."""
        with open(self.work_area.vector_index_path(job_id), "r", encoding="utf-8") as f:
            index = json.load(f)
        if not isinstance(index, dict):
            raise ValueError("vector index is not an object")
        return index

    def _save(self, job_id: str, index: VectorIndex) -> None:
        path = self.work_area.vector_index_path(job_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(index, f)
        tmp.replace(path)

    def generate_and_store_embeddings(self, job_id: str, files: Iterable[Tuple[str, str]]) -> int:
        """
        Embed (path, content) pairs in one batch call and merge them into the
        job's index. Blank files are skipped. Returns how many were stored.
        """
        with_content = [(p, c) for p, c in files if c and c.strip()]
        if not with_content:
            logger.info(f"[Indexing] job={job_id} No new content to embed. Skipping.")
            return 0

        if self.embedder is None:
            raise ExternalConfigError("Embedding provider is not configured.")
        vectors = self.embedder.embed([c for _, c in with_content])

        try:
            index = self.load(job_id)
        except (FileNotFoundError, ValueError):
            index = {}
        for (path, _), vector in zip(with_content, vectors):
            index[path] = vector

        self._save(job_id, index)
        logger.info(f"[Indexing] job={job_id} Stored embeddings for {len(with_content)} files ({len(index)} total)")
        return len(with_content)

    def retrieve_relevant_chunks(self, job_id: str, query: str, top_k: int = 5,
                                 exclude: Iterable[str] = ()) -> List[Tuple[str, str]]:
        """
        The `top_k` indexed files most similar to `query`, as (path, current
        content), best first. Ties keep index order. Returns [] when the job
        has no index yet: retrieval only ever augments a prompt.
        """
        try:
            index = self.load(job_id)
        except (FileNotFoundError, ValueError) as e:
            logger.warning(f"[Indexing] Failed to load index for job {job_id}. Has it been generated? ({e})")
            return []

        excluded = set(exclude)
        candidates = [(p, v) for p, v in index.items() if p not in excluded]
        if not candidates or top_k <= 0 or self.embedder is None:
            return []

        [query_vector] = self.embedder.embed([query])
        # sorted() is stable, so equal scores stay in index order
        ranked = sorted(
            ((p, cosine_similarity(query_vector, v)) for p, v in candidates),
            key=lambda item: item[1],
            reverse=True,
        )[:top_k]
        logger.info(f"[Indexing] job={job_id} Top {top_k} relevant files: {[p for p, _ in ranked]}")

        work_dir = self.work_area.work_dir(job_id)
        out: List[Tuple[str, str]] = []
        for path, _ in ranked:
            try:
                out.append((path, (work_dir / path).read_text(encoding="utf-8")))
            except (FileNotFoundError, UnicodeDecodeError):
                # indexed file since deleted or unreadable; the index is never pruned
                logger.debug(f"[Indexing] job={job_id} skipping unreadable indexed file {path}")
        return out

    def reindex_all(self, job_id: str, files: Iterable[Tuple[str, Path]]) -> int:
        pairs = []
        for rel, abs_path in files:
            try:
                pairs.append((rel, Path(abs_path).read_text(encoding="utf-8")))
            except UnicodeDecodeError:
                continue
        return self.generate_and_store_embeddings(job_id, pairs)
