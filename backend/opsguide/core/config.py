"""
Environment-driven configuration.

All settings are read from environment variables once and cached. Tests that
need different values can call `reset_settings()` after patching the
environment.

Environment configuration:
- DOWNSTREAM_API_BASE: Operational API base URL (default: http://localhost:8094)
- DOWNSTREAM_API_TIMEOUT_SECONDS: Per-call timeout for step execution (default: 5.0)
- STEP_EXECUTION_FAIL_OPEN: Substitute success on downstream failure (default: true)
- ORCHESTRATOR_MAX_WORKERS: Worker pool size for augmented mode (default: 10)
- RETRIEVAL_TOP_K: Knowledge chunks retrieved per query (default: 5)
- EMBEDDING_BACKEND: "hash" or "sentence_transformers" (default: hash)
- KNOWLEDGE_BASE_PATH: Knowledge base JSON (default: packaged knowledge_base.json)
- KNOWLEDGE_INDEX_DIR: Directory holding a prebuilt FAISS index (optional)
- LLM_API_BASE / LLM_API_KEY / LLM_MODEL / LLM_TIMEOUT_SECONDS
- LLM_MAX_TOKENS / LLM_TEMPERATURE / LLM_COST_PER_1K_TOKENS
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_KNOWLEDGE_BASE_PATH = Path(__file__).parent.parent / "data" / "knowledge_base.json"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)) or default)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)) or default)


@dataclass(frozen=True)
class Settings:
    """Snapshot of runtime configuration."""

    downstream_api_base: str = "http://localhost:8094"
    downstream_timeout_seconds: float = 5.0
    step_execution_fail_open: bool = True

    orchestrator_max_workers: int = 10
    retrieval_top_k: int = 5

    embedding_backend: str = "hash"
    knowledge_base_path: Path = DEFAULT_KNOWLEDGE_BASE_PATH
    knowledge_index_dir: Optional[Path] = None

    llm_api_base: str = "https://api.openai.com/v1"
    llm_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 15.0
    llm_max_tokens: int = 1024
    llm_temperature: float = 0.1
    llm_cost_per_1k_tokens: float = 0.0

    @classmethod
    def from_env(cls) -> "Settings":
        index_dir = os.getenv("KNOWLEDGE_INDEX_DIR")
        return cls(
            downstream_api_base=os.getenv("DOWNSTREAM_API_BASE", cls.downstream_api_base),
            downstream_timeout_seconds=_env_float(
                "DOWNSTREAM_API_TIMEOUT_SECONDS", cls.downstream_timeout_seconds
            ),
            step_execution_fail_open=_env_bool(
                "STEP_EXECUTION_FAIL_OPEN", cls.step_execution_fail_open
            ),
            orchestrator_max_workers=_env_int(
                "ORCHESTRATOR_MAX_WORKERS", cls.orchestrator_max_workers
            ),
            retrieval_top_k=_env_int("RETRIEVAL_TOP_K", cls.retrieval_top_k),
            embedding_backend=os.getenv("EMBEDDING_BACKEND", cls.embedding_backend).lower(),
            knowledge_base_path=Path(
                os.getenv("KNOWLEDGE_BASE_PATH") or DEFAULT_KNOWLEDGE_BASE_PATH
            ),
            knowledge_index_dir=Path(index_dir) if index_dir else None,
            llm_api_base=os.getenv("LLM_API_BASE", cls.llm_api_base),
            llm_api_key=os.getenv("LLM_API_KEY") or None,  # None disables reasoning
            llm_model=os.getenv("LLM_MODEL", cls.llm_model),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", cls.llm_timeout_seconds),
            llm_max_tokens=_env_int("LLM_MAX_TOKENS", cls.llm_max_tokens),
            llm_temperature=_env_float("LLM_TEMPERATURE", cls.llm_temperature),
            llm_cost_per_1k_tokens=_env_float(
                "LLM_COST_PER_1K_TOKENS", cls.llm_cost_per_1k_tokens
            ),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Global settings accessor (read once from the environment)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None
