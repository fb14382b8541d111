"""
Knowledge base retrieval over a FAISS inner-product index.

The index is either loaded from KNOWLEDGE_INDEX_DIR (built offline by
scripts/build_knowledge_index.py) or built in memory at startup from the
knowledge base JSON. Embeddings are L2-normalized, so inner product equals
cosine similarity.
"""
import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import faiss
import numpy as np

from opsguide.core.config import get_settings
from opsguide.core.logging import get_logger
from opsguide.models.domain import KnowledgeChunk
from opsguide.services.ai.embeddings import get_embedding_service

logger = get_logger(__name__)

INDEX_FILENAME = "knowledge.index"
METADATA_FILENAME = "knowledge_metadata.json"
INDEX_VERSION = "1.0.0"


def load_knowledge_base(path: Path) -> List[Dict[str, Any]]:
    """Read chunk records (content, source, type) from the knowledge base JSON."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    chunks = data.get("chunks", [])
    for chunk in chunks:
        missing = [key for key in ("content", "source", "type") if not chunk.get(key)]
        if missing:
            raise ValueError(f"Knowledge chunk {chunk.get('id')} is missing {missing}")
    return chunks


class KnowledgeRetrievalService:
    """
    Top-k passage retrieval.

    Handles:
    - Index build from the knowledge base JSON
    - Index and metadata load from disk
    - Search returning KnowledgeChunks by descending score
    """

    def __init__(
        self,
        embedder=None,
        knowledge_base_path: Optional[Path] = None,
        index_dir: Optional[Path] = None,
    ):
        settings = get_settings()
        self.embedder = embedder or get_embedding_service()
        self.knowledge_base_path = Path(knowledge_base_path or settings.knowledge_base_path)
        self.index_dir = Path(index_dir) if index_dir else settings.knowledge_index_dir
        self.index: Optional[faiss.Index] = None
        self.chunks: List[Dict[str, Any]] = []

    def build_index(self) -> None:
        start_time = time.time()
        chunks = load_knowledge_base(self.knowledge_base_path)
        embeddings = self.embedder.embed_batch([chunk["content"] for chunk in chunks])

        index = faiss.IndexFlatIP(self.embedder.dim)
        if len(chunks):
            index.add(np.ascontiguousarray(embeddings, dtype=np.float32))

        self.index = index
        self.chunks = chunks
        logger.info(
            "knowledge_index_built",
            knowledge_base_path=str(self.knowledge_base_path),
            total_chunks=len(chunks),
            build_time_ms=int((time.time() - start_time) * 1000),
        )

    def load_index(self, index_dir: Path) -> None:
        index_path = index_dir / INDEX_FILENAME
        metadata_path = index_dir / METADATA_FILENAME

        index = faiss.read_index(str(index_path))
        with open(metadata_path, "r", encoding="utf-8") as f:
            metadata = json.load(f)

        if index.d != self.embedder.dim:
            raise ValueError(
                f"Index dimension {index.d} does not match embedding dimension {self.embedder.dim}"
            )
        if metadata.get("embedding_backend") not in (None, self.embedder.name):
            raise ValueError(
                f"Index built with {metadata.get('embedding_backend')}, "
                f"runtime embedder is {self.embedder.name}"
            )

        self.index = index
        self.chunks = metadata.get("chunks", [])
        logger.info(
            "knowledge_index_loaded",
            index_path=str(index_path),
            total_chunks=len(self.chunks),
        )

    def save_index(self, index_dir: Path) -> None:
        """Write the index and chunk metadata so load_index can restore them."""
        if self.index is None:
            raise RuntimeError("Knowledge index not built")
        index_dir.mkdir(parents=True, exist_ok=True)
        faiss.write_index(self.index, str(index_dir / INDEX_FILENAME))

        metadata = {
            "version": INDEX_VERSION,
            "build_date": datetime.now(timezone.utc).isoformat(),
            "embedding_backend": self.embedder.name,
            "embedding_dim": self.embedder.dim,
            "index_type": "IndexFlatIP",
            "total_chunks": len(self.chunks),
            "chunks": self.chunks,
        }
        with open(index_dir / METADATA_FILENAME, "w", encoding="utf-8") as f:
            json.dump(metadata, f, indent=2)

        logger.info(
            "knowledge_index_saved",
            index_dir=str(index_dir),
            total_chunks=len(self.chunks),
        )

    def initialize(self) -> None:
        """Load the prebuilt index when configured and present, else build in memory."""
        if self.index_dir and (self.index_dir / INDEX_FILENAME).exists():
            self.load_index(self.index_dir)
            return
        if self.index_dir:
            logger.warning(
                "knowledge_index_not_found",
                index_dir=str(self.index_dir),
                message="Building index in memory from knowledge base.",
            )
        self.build_index()

    def is_available(self) -> bool:
        return self.index is not None

    def search(self, embedding: np.ndarray, k: int) -> List[KnowledgeChunk]:
        """
        Find the k passages closest to an embedding.

        Args:
            embedding: Query vector (EMBEDDING_DIM)
            k: Maximum number of results

        Returns:
            KnowledgeChunks sorted by score descending

        Raises:
            RuntimeError: If the index is not loaded
        """
        if self.index is None:
            raise RuntimeError("Knowledge index not loaded")
        if k <= 0 or self.index.ntotal == 0:
            return []

        query = np.asarray(embedding, dtype=np.float32).reshape(1, -1)
        scores, indices = self.index.search(query, min(k, self.index.ntotal))

        results = []
        for score, idx in zip(scores[0], indices[0]):
            if idx == -1:
                continue
            chunk = self.chunks[int(idx)]
            results.append(
                KnowledgeChunk(
                    content=chunk["content"],
                    source=chunk["source"],
                    type=chunk["type"],
                    score=round(float(score), 4),
                )
            )
        results.sort(key=lambda c: c.score, reverse=True)

        logger.debug(
            "knowledge_search_completed",
            results_count=len(results),
            top_k=k,
        )
        return results


_knowledge_retrieval_service: Optional[KnowledgeRetrievalService] = None


def get_knowledge_retrieval_service() -> KnowledgeRetrievalService:
    """Global singleton accessor; builds the index on first use."""
    global _knowledge_retrieval_service
    if _knowledge_retrieval_service is None:
        service = KnowledgeRetrievalService()
        service.initialize()
        _knowledge_retrieval_service = service
    return _knowledge_retrieval_service


def initialize_knowledge_retrieval() -> bool:
    """
    Initialize the global retrieval service at startup.

    Returns:
        True if the index is ready, False otherwise (augmented requests then fall back)
    """
    try:
        get_knowledge_retrieval_service()
    except Exception as e:
        logger.error(
            "knowledge_retrieval_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return False
    logger.info("knowledge_retrieval_initialized")
    return True


def knowledge_retrieval_ready() -> bool:
    """True once the global index is built or loaded; never triggers a build."""
    return _knowledge_retrieval_service is not None and _knowledge_retrieval_service.is_available()
