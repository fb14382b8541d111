"""
Build the FAISS knowledge index offline.

This script:
1. Loads runbook and API-spec chunks from the knowledge base JSON
2. Embeds them with the configured backend (EMBEDDING_BACKEND)
3. Builds an inner-product FAISS index
4. Saves index and metadata to KNOWLEDGE_INDEX_DIR (default: backend/data/indices)

Point the API at the same KNOWLEDGE_INDEX_DIR to load it instead of building
the index at startup.
"""
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from opsguide.core.config import get_settings
from opsguide.core.logging import configure_logging, get_logger
from opsguide.services.ai.knowledge import KnowledgeRetrievalService

# Configure logging
configure_logging(log_level="INFO", json_output=False)
logger = get_logger(__name__)

DEFAULT_INDEX_DIR = Path(__file__).parent.parent / "data" / "indices"


def main() -> int:
    """Build and save the knowledge index."""
    settings = get_settings()
    index_dir = settings.knowledge_index_dir or DEFAULT_INDEX_DIR

    logger.info(
        "build_knowledge_index_started",
        knowledge_base_path=str(settings.knowledge_base_path),
        embedding_backend=settings.embedding_backend,
        index_dir=str(index_dir),
    )

    service = KnowledgeRetrievalService(index_dir=index_dir)
    try:
        service.build_index()
    except (OSError, ValueError) as e:
        logger.error(
            "build_knowledge_index_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return 1

    if not service.chunks:
        logger.error("build_knowledge_index_no_chunks")
        return 1

    service.save_index(index_dir)
    logger.info(
        "build_knowledge_index_completed",
        total_chunks=len(service.chunks),
        index_dir=str(index_dir),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
