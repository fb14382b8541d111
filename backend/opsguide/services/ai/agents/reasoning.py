"""
Reasoning agent for augmented decisions.

Builds a grounded prompt from retrieved knowledge chunks and returns the
model's free-text answer. Numbered lines in the answer become plan steps.

Fallback behavior is handled by the DecisionOrchestrator.
"""
from typing import List, Optional, Sequence

from opsguide.core.config import get_settings
from opsguide.core.logging import get_logger
from opsguide.models.domain import KnowledgeChunk
from opsguide.services.ai.llm_client import LLMClient, extract_message_text, get_llm_client

logger = get_logger(__name__)

AGENT_NAME = "reasoning"

SYSTEM_PROMPT = (
    "You are an operational intelligence assistant. Use the following knowledge "
    "base context to provide accurate, citation-backed responses."
)

INSTRUCTIONS = (
    "Provide a detailed response with specific API endpoints, procedures, and "
    "safety considerations. Include citations to the knowledge base sources. "
    "List the remediation steps as a numbered list, one step per line, "
    'formatted as "1. <step>".'
)


def build_prompt(query: str, chunks: Sequence[KnowledgeChunk]) -> str:
    """Render retrieved chunks and the user query into the reasoning prompt."""
    lines: List[str] = ["Knowledge Base Context:"]
    for chunk in chunks:
        lines.append(f"Source: {chunk.source}")
        lines.append(f"Content: {chunk.content}")
        lines.append(f"Relevance Score: {chunk.score}")
        lines.append("")
    lines.append(f"User Query: {query}")
    lines.append("")
    lines.append(INSTRUCTIONS)
    return "\n".join(lines)


class ReasoningAgent:
    """Produces remediation guidance grounded in retrieved knowledge."""

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self._llm_client = llm_client or get_llm_client()

    async def reason(self, query: str, chunks: Sequence[KnowledgeChunk]) -> str:
        """
        Ask the LLM for guidance on a query.

        Raises:
            RuntimeError / HTTP errors if the LLM is misconfigured or unavailable.
            ValueError if the response carries no text.
        """
        settings = get_settings()
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(query, chunks)},
        ]
        data = await self._llm_client.chat(
            agent=AGENT_NAME,
            messages=messages,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
        )
        text = extract_message_text(data)
        logger.info(
            "reasoning_completed",
            chunk_count=len(chunks),
            response_length=len(text),
        )
        return text


_reasoning_agent: Optional[ReasoningAgent] = None


def get_reasoning_agent() -> ReasoningAgent:
    """Global singleton accessor."""
    global _reasoning_agent
    if _reasoning_agent is None:
        _reasoning_agent = ReasoningAgent()
    return _reasoning_agent
