"""
Unit tests for environment-driven settings.
"""
from pathlib import Path

from opsguide.core.config import DEFAULT_KNOWLEDGE_BASE_PATH, Settings


def test_defaults(monkeypatch):
    for name in (
        "DOWNSTREAM_API_BASE",
        "STEP_EXECUTION_FAIL_OPEN",
        "EMBEDDING_BACKEND",
        "KNOWLEDGE_INDEX_DIR",
        "LLM_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.downstream_api_base == "http://localhost:8094"
    assert settings.step_execution_fail_open is True
    assert settings.embedding_backend == "hash"
    assert settings.knowledge_base_path == DEFAULT_KNOWLEDGE_BASE_PATH
    assert settings.knowledge_index_dir is None
    assert settings.llm_api_key is None


def test_overrides(monkeypatch):
    monkeypatch.setenv("DOWNSTREAM_API_BASE", "http://ops-api:9000")
    monkeypatch.setenv("STEP_EXECUTION_FAIL_OPEN", "false")
    monkeypatch.setenv("RETRIEVAL_TOP_K", "3")
    monkeypatch.setenv("EMBEDDING_BACKEND", "Sentence_Transformers")
    monkeypatch.setenv("KNOWLEDGE_INDEX_DIR", "/var/lib/opsguide/indices")
    monkeypatch.setenv("LLM_API_KEY", "sk-test")

    settings = Settings.from_env()

    assert settings.downstream_api_base == "http://ops-api:9000"
    assert settings.step_execution_fail_open is False
    assert settings.retrieval_top_k == 3
    assert settings.embedding_backend == "sentence_transformers"
    assert settings.knowledge_index_dir == Path("/var/lib/opsguide/indices")
    assert settings.llm_api_key == "sk-test"


def test_blank_values_fall_back(monkeypatch):
    monkeypatch.setenv("STEP_EXECUTION_FAIL_OPEN", " ")
    monkeypatch.setenv("LLM_API_KEY", "")

    settings = Settings.from_env()

    assert settings.step_execution_fail_open is True
    assert settings.llm_api_key is None
