"""
Unit tests for knowledge base embedding and retrieval.

Uses the hash embedder so tests need no model download.
"""
import json

import numpy as np
import pytest

from opsguide.core.config import get_settings
from opsguide.services.ai.embeddings import (
    EMBEDDING_DIM,
    HashEmbeddingService,
    create_embedding_service,
)
from opsguide.services.ai.knowledge import (
    INDEX_FILENAME,
    METADATA_FILENAME,
    KnowledgeRetrievalService,
    load_knowledge_base,
)


@pytest.fixture
def embedder():
    return HashEmbeddingService()


@pytest.fixture
def small_knowledge_base(tmp_path):
    path = tmp_path / "knowledge_base.json"
    path.write_text(json.dumps({
        "version": "test",
        "chunks": [
            {"id": "a", "content": "alpha beta gamma", "source": "kb/a.md", "type": "runbook"},
            {"id": "b", "content": "delta epsilon zeta", "source": "kb/b.md", "type": "runbook"},
            {"id": "c", "content": "eta theta iota", "source": "kb/c.md", "type": "api_spec"},
        ],
    }))
    return path


def test_hash_embedding_is_normalized_and_deterministic(embedder):
    first = embedder.embed("cancel case CASE-2024-001")
    second = embedder.embed("cancel case CASE-2024-001")

    assert first.shape == (EMBEDDING_DIM,)
    assert first.dtype == np.float32
    assert np.allclose(first, second)
    assert np.isclose(np.linalg.norm(first), 1.0)


def test_hash_embedding_of_empty_text_is_zero(embedder):
    assert not embedder.embed("").any()


def test_embed_batch_shape(embedder):
    assert embedder.embed_batch(["a b", "c d"]).shape == (2, EMBEDDING_DIM)
    assert embedder.embed_batch([]).shape == (0, EMBEDDING_DIM)


def test_unknown_embedding_backend():
    with pytest.raises(ValueError):
        create_embedding_service("word2vec")


def test_search_ranks_overlapping_chunk_first(embedder, small_knowledge_base):
    service = KnowledgeRetrievalService(embedder=embedder, knowledge_base_path=small_knowledge_base)
    service.build_index()

    results = service.search(embedder.embed("delta epsilon"), k=2)

    assert len(results) == 2
    assert results[0].source == "kb/b.md"
    assert results[0].score > results[1].score


def test_search_caps_k_at_index_size(embedder, small_knowledge_base):
    service = KnowledgeRetrievalService(embedder=embedder, knowledge_base_path=small_knowledge_base)
    service.build_index()

    assert len(service.search(embedder.embed("alpha"), k=10)) == 3
    assert service.search(embedder.embed("alpha"), k=0) == []


def test_search_before_build_raises(embedder, small_knowledge_base):
    service = KnowledgeRetrievalService(embedder=embedder, knowledge_base_path=small_knowledge_base)

    assert not service.is_available()
    with pytest.raises(RuntimeError):
        service.search(embedder.embed("alpha"), k=1)


def test_save_and_load_index(embedder, small_knowledge_base, tmp_path):
    index_dir = tmp_path / "indices"
    builder = KnowledgeRetrievalService(embedder=embedder, knowledge_base_path=small_knowledge_base)
    builder.build_index()
    builder.save_index(index_dir)

    assert (index_dir / INDEX_FILENAME).exists()
    metadata = json.loads((index_dir / METADATA_FILENAME).read_text())
    assert metadata["embedding_backend"] == "hash"
    assert metadata["total_chunks"] == 3

    loader = KnowledgeRetrievalService(
        embedder=embedder,
        knowledge_base_path=small_knowledge_base,
        index_dir=index_dir,
    )
    loader.initialize()

    assert loader.is_available()
    assert loader.search(embedder.embed("eta theta"), k=1)[0].source == "kb/c.md"


def test_load_rejects_dimension_mismatch(embedder, small_knowledge_base, tmp_path):
    index_dir = tmp_path / "indices"
    builder = KnowledgeRetrievalService(embedder=embedder, knowledge_base_path=small_knowledge_base)
    builder.build_index()
    builder.save_index(index_dir)

    loader = KnowledgeRetrievalService(
        embedder=HashEmbeddingService(dim=64),
        knowledge_base_path=small_knowledge_base,
    )
    with pytest.raises(ValueError):
        loader.load_index(index_dir)


def test_initialize_builds_when_index_dir_is_empty(embedder, small_knowledge_base, tmp_path):
    service = KnowledgeRetrievalService(
        embedder=embedder,
        knowledge_base_path=small_knowledge_base,
        index_dir=tmp_path / "missing",
    )
    service.initialize()

    assert service.is_available()
    assert len(service.chunks) == 3


def test_packaged_knowledge_base_is_valid(embedder):
    chunks = load_knowledge_base(get_settings().knowledge_base_path)
    assert chunks

    service = KnowledgeRetrievalService(embedder=embedder)
    service.build_index()
    results = service.search(embedder.embed("cancel case dependencies"), k=5)

    assert len(results) == 5
    assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)


def test_knowledge_base_rejects_incomplete_chunks(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"chunks": [{"id": "x", "content": "text", "source": "kb/x.md"}]}))

    with pytest.raises(ValueError):
        load_knowledge_base(path)
