"""
Pattern-based task classification.

Maps a free-text operational request to:
- task_id: first TaskId, in table declaration order, with any matching pattern;
  a keyword fallback applies when no pattern matches
- confidence: 0.9 when a task was identified, 0.5 otherwise (never graded)
- environment: first matching environment table entry, else the request's environment
- service: first matching service table entry, else "Generic"

Tables are ordered tuples so that first-match-wins stays explicit.
"""
import re
from typing import Callable, Optional, Pattern, Sequence, Tuple, TypeVar

from opsguide.core.logging import get_logger
from opsguide.core.metrics import record_classification
from opsguide.models.domain import (
    ClassificationResult,
    OperationalRequest,
    TaskId,
    UseCase,
)
from opsguide.services.classification.entity_extraction import (
    EntityExtractor,
    get_entity_extractor,
)

logger = get_logger(__name__)

K = TypeVar("K")

CONFIDENCE_MATCHED = 0.9
CONFIDENCE_UNMATCHED = 0.5
DEFAULT_SERVICE = "Generic"


def _patterns(*expressions: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(expr, re.IGNORECASE) for expr in expressions)


TASK_RULES: Tuple[Tuple[TaskId, Tuple[Pattern[str], ...]], ...] = (
    (TaskId.CANCEL_ORDER, _patterns(
        r"\bcancel\b.*\border\b",
        r"\border\b.*\bcancel\b",
        r"\bterminate\b.*\border\b",
        r"\babort\b.*\border\b",
        r"\bstop\b.*\border\b",
    )),
    (TaskId.UPDATE_ORDER_STATUS, _patterns(
        r"\bchange\b.*\border\b.*\bstatus\b",
        r"\border\b.*\bstatus\b.*\bchange\b",
        r"\bupdate\b.*\border\b.*\bstatus\b",
        r"\btransition\b.*\border\b",
        r"\bmove\b.*\border\b.*\bto\b",
    )),
    (TaskId.CANCEL_CASE, _patterns(
        r"\bcancel\b.*\bcase\b",
        r"\bcase\b.*\bcancel\b",
        r"\bterminate\b.*\bcase\b",
        r"\babort\b.*\bcase\b",
        r"\bstop\b.*\bcase\b",
        r"\bclose\b.*\bcase\b",
        r"\bcase\b.*\bclose\b",
    )),
    (TaskId.UPDATE_CASE_STATUS, _patterns(
        r"\bchange\b.*\bcase\b.*\bstatus\b",
        r"\bcase\b.*\bstatus\b.*\bchange\b",
        r"\bupdate\b.*\bcase\b.*\bstatus\b",
        r"\btransition\b.*\bcase\b",
        r"\bmove\b.*\bcase\b.*\bto\b",
        r"\bset\b.*\bcase\b.*\bstatus\b",
    )),
    (TaskId.UPDATE_SAMPLES, _patterns(
        r"\bupdate\b.*\bsamples?\b",
        r"\bchange\b.*\bsamples?\b",
        r"\bmodify\b.*\bsamples?\b",
        r"\bsamples?\b.*\bupdate\b",
    )),
    (TaskId.UPDATE_STAIN, _patterns(
        r"\bupdate\b.*\bstain\b",
        r"\bchange\b.*\bstain\b",
        r"\bmodify\b.*\bstain\b",
        r"\bstain\b.*\bupdate\b",
        r"\bstain\b.*\bslide\b",
    )),
)

CANCEL_WORDS = ("cancel", "terminate", "abort", "stop")
UPDATE_WORDS = ("status", "change", "update", "transition")


def _has_any(query: str, words: Sequence[str]) -> bool:
    return any(word in query for word in words)


# Substring fallback, consulted only when no TASK_RULES pattern matched.
FALLBACK_RULES: Tuple[Tuple[TaskId, Callable[[str], bool]], ...] = (
    (TaskId.CANCEL_ORDER, lambda q: _has_any(q, CANCEL_WORDS) and "order" in q),
    (TaskId.CANCEL_CASE, lambda q: _has_any(q, CANCEL_WORDS) and "case" in q),
    (TaskId.UPDATE_ORDER_STATUS, lambda q: _has_any(q, UPDATE_WORDS) and "order" in q),
    (TaskId.UPDATE_CASE_STATUS, lambda q: _has_any(q, UPDATE_WORDS) and "case" in q),
    (TaskId.UPDATE_SAMPLES, lambda q: "sample" in q),
    (TaskId.UPDATE_STAIN, lambda q: "stain" in q),
)

ENVIRONMENT_RULES: Tuple[Tuple[str, Tuple[Pattern[str], ...]], ...] = (
    ("dev", _patterns(r"\bdev\b", r"\bdevelopment\b", r"\bdev-\w+\b")),
    ("staging", _patterns(r"\bstaging\b", r"\bstage\b", r"\bstg\b")),
    ("prod", _patterns(r"\bprod\b", r"\bproduction\b", r"\bprd\b")),
)

SERVICE_RULES: Tuple[Tuple[str, Tuple[Pattern[str], ...]], ...] = (
    ("Order", _patterns(r"\border\b", r"\borders\b", r"\border management\b")),
    ("Case", _patterns(r"\bcase\b", r"\bcases\b", r"\bcase management\b")),
    ("Sample", _patterns(r"\bsample\b", r"\bsamples\b", r"\bsample management\b")),
    ("Slide", _patterns(r"\bslide\b", r"\bslides\b", r"\bslide management\b")),
    ("Stain", _patterns(r"\bstain\b", r"\bstains\b", r"\bstaining\b")),
)


def first_match(
    rules: Sequence[Tuple[K, Sequence[Pattern[str]]]],
    text: str,
) -> Optional[K]:
    """Return the key of the first rule with any pattern found in `text`."""
    for key, patterns in rules:
        if any(pattern.search(text) for pattern in patterns):
            return key
    return None


class PatternClassifier:
    """Deterministic classifier used by the fast path and as the augmented fallback."""

    def __init__(self, entity_extractor: Optional[EntityExtractor] = None):
        self._entity_extractor = entity_extractor or get_entity_extractor()

    def identify_task(self, query: str) -> Optional[TaskId]:
        query_lower = query.lower()
        task_id = first_match(TASK_RULES, query_lower)
        if task_id is not None:
            return task_id

        for fallback_task, predicate in FALLBACK_RULES:
            if predicate(query_lower):
                return fallback_task
        return None

    def identify_environment(self, query: str, default_environment: str) -> str:
        return first_match(ENVIRONMENT_RULES, query.lower()) or default_environment

    def identify_service(self, query: str) -> str:
        return first_match(SERVICE_RULES, query.lower()) or DEFAULT_SERVICE

    def classify(self, request: OperationalRequest) -> ClassificationResult:
        """
        Classify an operational request.

        Args:
            request: Validated request (query is non-blank)

        Returns:
            ClassificationResult with entities merged with the resolved service
        """
        query = request.query
        task_id = self.identify_task(query)
        environment = self.identify_environment(query, request.environment)
        service = self.identify_service(query)

        entities = self._entity_extractor.extract(query)
        entities["service"] = service

        confidence = CONFIDENCE_MATCHED if task_id is not None else CONFIDENCE_UNMATCHED

        record_classification(task_id.value if task_id else None)
        logger.info(
            "pattern_classification_completed",
            task_id=task_id.value if task_id else None,
            confidence=confidence,
            environment=environment,
            service=service,
        )

        return ClassificationResult(
            use_case=UseCase.OPERATIONAL_ASK,
            task_id=task_id,
            confidence=confidence,
            extracted_entities=entities,
            environment=environment,
            service=service,
        )


_pattern_classifier: Optional[PatternClassifier] = None


def get_pattern_classifier() -> PatternClassifier:
    """Global singleton accessor."""
    global _pattern_classifier
    if _pattern_classifier is None:
        _pattern_classifier = PatternClassifier()
    return _pattern_classifier
