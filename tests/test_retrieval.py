import json

import pytest

from flames.retrieval import SemanticIndex, cosine_similarity


@pytest.fixture
def job_dir(work_area):
    work_area.work_dir("job1").mkdir(parents=True)
    return work_area.work_dir("job1")


@pytest.fixture
def index(work_area, embedder):
    return SemanticIndex(work_area, embedder)


def _write(job_dir, files):
    for path, content in files:
        target = job_dir / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


def test_cosine_similarity_properties():
    v = [1.0, 2.0, 3.0]
    assert cosine_similarity(v, v) == pytest.approx(1.0)
    assert cosine_similarity(v, [0.0, 0.0, 0.0]) == 0
    assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_cosine_similarity_of_mismatched_lengths_is_zero():
    # [1, 0] is a prefix of the longer vector; truncating would score 1
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 5.0]) == 0.0
    assert cosine_similarity([], [1.0]) == 0.0


def test_three_files_indexed_and_all_returned_ranked(index, work_area, embedder, job_dir):
    files = [
        ("src/Header.jsx", "header header app"),
        ("src/Button.jsx", "button button button"),
        ("src/Footer.jsx", "footer app"),
    ]
    _write(job_dir, files)

    assert index.generate_and_store_embeddings("job1", files) == 3
    stored = json.loads(work_area.vector_index_path("job1").read_text(encoding="utf-8"))
    assert sorted(stored) == ["src/Button.jsx", "src/Footer.jsx", "src/Header.jsx"]
    assert len(embedder.calls) == 1

    results = index.retrieve_relevant_chunks("job1", "make the button bigger", top_k=5)

    assert len(results) == 3
    assert results[0] == ("src/Button.jsx", "button button button")
    [query_vector] = embedder.embed(["make the button bigger"])
    scores = [cosine_similarity(query_vector, stored[p]) for p, _ in results]
    assert scores == sorted(scores, reverse=True)


def test_blank_files_are_skipped(index, embedder, work_area):
    count = index.generate_and_store_embeddings("job1", [("a.js", "app"), ("empty.js", "   \n"), ("b.js", "")])

    assert count == 1
    assert embedder.calls == [["app"]]
    assert list(index.load("job1")) == ["a.js"]


def test_nothing_to_embed_is_a_no_op(index, embedder, work_area):
    assert index.generate_and_store_embeddings("job1", [("a.js", " ")]) == 0
    assert embedder.calls == []
    assert not work_area.vector_index_path("job1").exists()


def test_reembedding_overwrites_existing_entry(index, job_dir):
    index.generate_and_store_embeddings("job1", [("a.js", "button"), ("b.js", "header")])
    index.generate_and_store_embeddings("job1", [("a.js", "footer")])

    stored = index.load("job1")
    assert list(stored) == ["a.js", "b.js"]
    assert stored["a.js"] == [0.0, 0.0, 1.0, 0.0, 0.0, 0.0]


def test_ties_keep_insertion_order(index, job_dir):
    files = [("z.js", "app"), ("a.js", "app"), ("m.js", "app")]
    _write(job_dir, files)
    index.generate_and_store_embeddings("job1", files)

    results = index.retrieve_relevant_chunks("job1", "app", top_k=5)

    assert [p for p, _ in results] == ["z.js", "a.js", "m.js"]


def test_top_k_and_exclude(index, job_dir):
    files = [("a.js", "button"), ("b.js", "button header"), ("c.js", "footer")]
    _write(job_dir, files)
    index.generate_and_store_embeddings("job1", files)

    assert [p for p, _ in index.retrieve_relevant_chunks("job1", "button", top_k=1)] == ["a.js"]
    assert [p for p, _ in index.retrieve_relevant_chunks("job1", "button", top_k=1, exclude=["a.js"])] == ["b.js"]


def test_missing_index_returns_empty_without_embedding(index, embedder):
    assert index.retrieve_relevant_chunks("job1", "anything") == []
    assert embedder.calls == []


def test_deleted_files_are_skipped_on_read(index, job_dir):
    _write(job_dir, [("keep.js", "button")])
    index.generate_and_store_embeddings("job1", [("keep.js", "button"), ("gone.js", "button app")])

    assert [p for p, _ in index.retrieve_relevant_chunks("job1", "button")] == ["keep.js"]


def test_reindex_all_reads_files_from_disk(index, job_dir):
    _write(job_dir, [("src/App.jsx", "app"), ("src/style.css", "style")])
    (job_dir / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\xff\xfe")

    count = index.reindex_all("job1", [
        ("src/App.jsx", job_dir / "src/App.jsx"),
        ("src/style.css", job_dir / "src/style.css"),
        ("logo.png", job_dir / "logo.png"),
    ])

    assert count == 2
    assert sorted(index.load("job1")) == ["src/App.jsx", "src/style.css"]
