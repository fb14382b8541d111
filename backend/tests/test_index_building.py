"""
Tests for the offline knowledge index build script.
"""
import json
import sys
from pathlib import Path

import pytest

# Add backend directory to path for script imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from opsguide.core.config import reset_settings
from opsguide.services.ai.knowledge import INDEX_FILENAME, METADATA_FILENAME


@pytest.fixture
def index_dir(tmp_path, monkeypatch):
    target = tmp_path / "indices"
    monkeypatch.setenv("KNOWLEDGE_INDEX_DIR", str(target))
    reset_settings()
    yield target
    reset_settings()


def test_build_knowledge_index(index_dir):
    from scripts.build_knowledge_index import main

    assert main() == 0
    assert (index_dir / INDEX_FILENAME).exists()

    metadata = json.loads((index_dir / METADATA_FILENAME).read_text())
    assert metadata["index_type"] == "IndexFlatIP"
    assert metadata["total_chunks"] == len(metadata["chunks"]) > 0


def test_build_fails_on_missing_knowledge_base(index_dir, tmp_path, monkeypatch):
    from scripts.build_knowledge_index import main

    monkeypatch.setenv("KNOWLEDGE_BASE_PATH", str(tmp_path / "missing.json"))
    reset_settings()

    assert main() == 1
    assert not (index_dir / INDEX_FILENAME).exists()
