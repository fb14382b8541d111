"""
Query and passage embeddings.

Two backends share the `embed(text) -> np.ndarray` contract (float32, EMBEDDING_DIM,
L2-normalized):
- hash: deterministic feature hashing of lower-cased word tokens (default, no model download)
- sentence_transformers: all-MiniLM-L6-v2, loaded on first use
"""
import hashlib
import re
import time
from typing import Optional, Sequence

import numpy as np

from opsguide.core.config import get_settings
from opsguide.core.logging import get_logger

logger = get_logger(__name__)

MODEL_NAME = "all-MiniLM-L6-v2"
EMBEDDING_DIM = 384

BACKEND_HASH = "hash"
BACKEND_SENTENCE_TRANSFORMERS = "sentence_transformers"

TOKEN_PATTERN = re.compile(r"[a-z0-9_]+")


def _normalize(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


class HashEmbeddingService:
    """
    Feature-hashing embedder.

    Each token maps to one dimension and a sign taken from its SHA-256 digest,
    so texts sharing vocabulary get a positive inner product.
    """

    name = BACKEND_HASH

    def __init__(self, dim: int = EMBEDDING_DIM):
        self.dim = dim

    def _bucket(self, token: str):
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "little") % self.dim
        sign = 1.0 if digest[4] & 1 else -1.0
        return index, sign

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dim, dtype=np.float32)
        for token in TOKEN_PATTERN.findall(text.lower()):
            index, sign = self._bucket(token)
            vector[index] += sign
        return _normalize(vector).astype(np.float32)

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dim), dtype=np.float32)
        return np.vstack([self.embed(text) for text in texts])


class SentenceTransformerEmbeddingService:
    """SentenceTransformers embedder; the model is loaded lazily."""

    name = BACKEND_SENTENCE_TRANSFORMERS

    def __init__(self, model_name: str = MODEL_NAME):
        self.model_name = model_name
        self.dim = EMBEDDING_DIM
        self.model = None

    def load_model(self) -> None:
        from sentence_transformers import SentenceTransformer

        logger.info("embedding_model_loading", model_name=self.model_name)
        start_time = time.time()
        self.model = SentenceTransformer(self.model_name)
        load_time_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "embedding_model_loaded",
            model_name=self.model_name,
            load_time_ms=load_time_ms,
        )

    def embed(self, text: str) -> np.ndarray:
        if self.model is None:
            self.load_model()
        embedding = self.model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        return np.asarray(embedding, dtype=np.float32)

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        if self.model is None:
            self.load_model()
        embeddings = self.model.encode(
            list(texts),
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return np.asarray(embeddings, dtype=np.float32)


def create_embedding_service(backend: Optional[str] = None):
    """Build the embedder named by `backend` (default: EMBEDDING_BACKEND)."""
    backend = (backend or get_settings().embedding_backend).lower()
    if backend == BACKEND_SENTENCE_TRANSFORMERS:
        return SentenceTransformerEmbeddingService()
    if backend == BACKEND_HASH:
        return HashEmbeddingService()
    raise ValueError(f"Unknown embedding backend: {backend}")


_embedding_service = None


def get_embedding_service():
    """Global singleton accessor."""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = create_embedding_service()
        logger.info("embedding_service_created", backend=_embedding_service.name)
    return _embedding_service