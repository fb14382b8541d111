"""
Decision orchestration.

Two modes:
- fast: pattern classification plus the task's fixed plan
- augmented: an explicit graph of named nodes

    embed(query) -> retrieve(embedding) -> reason(query, chunks)
    classify(request)                          [concurrent]
    join -> augmented decision artifact

Responsibilities:
- Run blocking nodes on a bounded thread pool, coroutine nodes on the loop
- Trace and time every node
- One fallback boundary: any graph failure yields the fast-path artifact with
  status processed_with_fallback

NON-responsibilities:
- Does NOT execute steps against downstream systems
"""
import asyncio
import contextvars
import functools
import inspect
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Tuple

from opsguide.core.config import get_settings
from opsguide.core.errors import PipelineError
from opsguide.core.logging import get_logger
from opsguide.core.metrics import (
    record_decision_request,
    record_orchestration_fallback,
    record_orchestration_node,
)
from opsguide.core.tracing import get_tracer
from opsguide.models.domain import (
    ClassificationResult,
    KnowledgeChunk,
    OperationalRequest,
    TaskId,
)
from opsguide.models.responses import (
    STATUS_PROCESSED,
    STATUS_PROCESSED_WITH_FALLBACK,
    STATUS_PROCESSED_WITH_RAG,
    ClassificationData,
    DecisionArtifact,
    InputEcho,
    NextSteps,
)
from opsguide.services.ai.agents.reasoning import get_reasoning_agent
from opsguide.services.ai.embeddings import get_embedding_service
from opsguide.services.ai.knowledge import get_knowledge_retrieval_service
from opsguide.services.classification.pattern_classifier import get_pattern_classifier
from opsguide.services.planning.step_planner import (
    StepPlanner,
    extract_steps_from_reasoning,
    get_step_planner,
)

logger = get_logger(__name__)

MODE_FAST = "fast"
MODE_AUGMENTED = "augmented"

MODE_ALIASES = {
    "fast": MODE_FAST,
    "core": MODE_FAST,
    "augmented": MODE_AUGMENTED,
    "rag": MODE_AUGMENTED,
}

NODE_EMBED = "embed"
NODE_RETRIEVE = "retrieve"
NODE_REASON = "reason"
NODE_CLASSIFY = "classify"
NODE_ASSEMBLE = "assemble"

GENERIC_TASK_NAME = "GENERIC_OPERATION"


def resolve_mode(mode: Optional[str]) -> str:
    """Map a mode query parameter to fast/augmented; unknown values mean fast."""
    if not mode:
        return MODE_FAST
    return MODE_ALIASES.get(mode.strip().lower(), MODE_FAST)


def _task_name(task_id: Optional[TaskId]) -> str:
    return task_id.value if task_id is not None else GENERIC_TASK_NAME


class DecisionOrchestrator:
    """Produces decision artifacts in fast or augmented mode."""

    def __init__(
        self,
        classifier=None,
        planner: Optional[StepPlanner] = None,
        embedder=None,
        retriever=None,
        reasoner=None,
        max_workers: Optional[int] = None,
        top_k: Optional[int] = None,
    ):
        settings = get_settings()
        self._classifier = classifier or get_pattern_classifier()
        self._planner = planner or get_step_planner()
        self._embedder = embedder or get_embedding_service()
        # Resolved on first retrieval so index build failures land inside the graph.
        self._retriever = retriever
        self._reasoner = reasoner or get_reasoning_agent()
        self._top_k = top_k or settings.retrieval_top_k
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.orchestrator_max_workers,
            thread_name_prefix="orchestrator",
        )

    # ------------------------------------------------------------------
    # Fast path
    # ------------------------------------------------------------------

    def process_fast(
        self,
        request: OperationalRequest,
        status: str = STATUS_PROCESSED,
    ) -> DecisionArtifact:
        classification = self._classifier.classify(request)
        plan = self._planner.plan(classification.task_id)
        return self._build_artifact(
            request,
            classification,
            status=status,
            extracted_entities=dict(classification.extracted_entities),
            next_steps=NextSteps.from_plan(plan),
        )

    # ------------------------------------------------------------------
    # Augmented path
    # ------------------------------------------------------------------

    async def process_augmented(self, request: OperationalRequest) -> DecisionArtifact:
        try:
            return await self._run_graph(request)
        except Exception as e:
            node = e.node if isinstance(e, PipelineError) else NODE_ASSEMBLE
            record_orchestration_fallback(node)
            logger.warning(
                "augmented_pipeline_fallback",
                node=node,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self.process_fast(request, status=STATUS_PROCESSED_WITH_FALLBACK)

    async def process(self, request: OperationalRequest, mode: Optional[str] = None) -> DecisionArtifact:
        """Dispatch a request to the mode's pipeline and count the outcome."""
        resolved = resolve_mode(mode)
        if resolved == MODE_AUGMENTED:
            artifact = await self.process_augmented(request)
        else:
            artifact = self.process_fast(request)

        record_decision_request(resolved, artifact.status)
        logger.info(
            "decision_completed",
            mode=resolved,
            status=artifact.status,
            task_id=artifact.classification.task_id,
        )
        return artifact

    async def _run_node(self, node: str, func: Callable, *args: Any) -> Any:
        """
        Run one graph node with a span and a latency sample.

        Coroutine functions are awaited on the loop; anything else runs on the
        orchestrator's thread pool with the caller's context vars.

        Raises:
            PipelineError: Wrapping any failure of the node
        """
        tracer = get_tracer()
        start = time.perf_counter()
        with tracer.start_as_current_span(f"orchestration.{node}") as span:
            span.set_attribute("orchestration.node", node)
            try:
                if inspect.iscoroutinefunction(func):
                    return await func(*args)
                loop = asyncio.get_running_loop()
                context = contextvars.copy_context()
                return await loop.run_in_executor(
                    self._executor,
                    functools.partial(context.run, func, *args),
                )
            except Exception as e:
                raise PipelineError(node, str(e)) from e
            finally:
                record_orchestration_node(node, time.perf_counter() - start)

    def _search(self, embedding) -> List[KnowledgeChunk]:
        retriever = self._retriever or get_knowledge_retrieval_service()
        return retriever.search(embedding, self._top_k)

    async def _retrieve_and_reason(self, query: str) -> Tuple[List[KnowledgeChunk], str]:
        embedding = await self._run_node(NODE_EMBED, self._embedder.embed, query)
        chunks = await self._run_node(NODE_RETRIEVE, self._search, embedding)
        reasoning = await self._run_node(NODE_REASON, self._reasoner.reason, query, chunks)
        return chunks, reasoning

    async def _run_graph(self, request: OperationalRequest) -> DecisionArtifact:
        classify_task = asyncio.ensure_future(
            self._run_node(NODE_CLASSIFY, self._classifier.classify, request)
        )
        rag_task = asyncio.ensure_future(self._retrieve_and_reason(request.query))
        try:
            classification, (chunks, reasoning) = await asyncio.gather(classify_task, rag_task)
        except BaseException:
            for task in (classify_task, rag_task):
                task.cancel()
            raise

        return self._build_augmented_artifact(request, classification, chunks, reasoning)

    def _build_augmented_artifact(
        self,
        request: OperationalRequest,
        classification: ClassificationResult,
        chunks: List[KnowledgeChunk],
        reasoning: str,
    ) -> DecisionArtifact:
        task_id = classification.task_id
        task_name = _task_name(task_id).lower()

        steps = extract_steps_from_reasoning(reasoning)
        plan = self._planner.plan_from_steps(
            task_id,
            steps,
            description=f"AI-enhanced {task_name.replace('_', ' ')} request",
            runbook=f"knowledge/runbooks/{task_name.replace('_', '-')}-runbook.md",
        )

        entities = dict(classification.extracted_entities)
        entities["rag_response"] = reasoning
        entities["knowledge_sources"] = [
            {"source": chunk.source, "score": chunk.score} for chunk in chunks
        ]

        logger.info(
            "augmented_decision_assembled",
            task_id=task_id.value if task_id else None,
            llm_step_count=len(steps),
            knowledge_chunks=len(chunks),
        )

        return self._build_artifact(
            request,
            classification,
            status=STATUS_PROCESSED_WITH_RAG,
            extracted_entities=entities,
            next_steps=NextSteps.from_plan(plan),
        )

    @staticmethod
    def _build_artifact(
        request: OperationalRequest,
        classification: ClassificationResult,
        status: str,
        extracted_entities: dict,
        next_steps: NextSteps,
    ) -> DecisionArtifact:
        return DecisionArtifact(
            request_id=request.request_id,
            status=status,
            input=InputEcho(
                query=request.query,
                environment=request.environment,
                user_id=request.user_id,
            ),
            classification=ClassificationData(
                use_case=classification.use_case.value,
                task_id=classification.task_id.value if classification.task_id else None,
                confidence=classification.confidence,
                service=classification.service,
                environment=classification.environment,
            ),
            extracted_entities=extracted_entities,
            next_steps=next_steps,
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


_decision_orchestrator: Optional[DecisionOrchestrator] = None


def get_decision_orchestrator() -> DecisionOrchestrator:
    """Global singleton accessor."""
    global _decision_orchestrator
    if _decision_orchestrator is None:
        _decision_orchestrator = DecisionOrchestrator()
    return _decision_orchestrator


def shutdown_decision_orchestrator() -> None:
    global _decision_orchestrator
    if _decision_orchestrator is not None:
        _decision_orchestrator.shutdown()
        _decision_orchestrator = None
