"""
Rule-based entity extraction for operational requests.

Extracts:
- Typed identifiers: order_id, case_id, sample_id, slide_id
  (PREFIX[_-]?DDDD[_-]?SUFFIX, normalized to "DDDD-SUFFIX")
- entity_id: generic "word-number" identifier, only when no typed id matched
- target_status: first status keyword in vocabulary order
- entity_type: first domain noun in priority order, "unknown" otherwise
"""
import re
from typing import Any, Dict, Optional, Pattern, Tuple

from opsguide.core.logging import get_logger

logger = get_logger(__name__)


def _typed_id_pattern(prefix: str) -> Pattern[str]:
    return re.compile(rf"{prefix}[_-]?(\d{{4}})[_-]?([\w-]+)", re.IGNORECASE | re.ASCII)


# Extraction order is also the key order of the output map.
TYPED_ID_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("order_id", _typed_id_pattern("ORDER")),
    ("case_id", _typed_id_pattern("CASE")),
    ("sample_id", _typed_id_pattern("SAMPLE")),
    ("slide_id", _typed_id_pattern("SLIDE")),
)

GENERIC_ID_PATTERN = re.compile(r"\b(\w+)[\s_-]?(\d+)\b", re.IGNORECASE | re.ASCII)

STATUS_KEYWORDS: Tuple[str, ...] = (
    "pending", "in_progress", "completed", "cancelled", "on_hold",
    "failed", "archived", "closed", "active", "inactive", "processing",
    "ready", "waiting", "approved", "rejected", "draft", "published",
)

ENTITY_TYPES: Tuple[str, ...] = ("order", "case", "sample", "slide", "stain")
UNKNOWN_ENTITY_TYPE = "unknown"


def _match_id(pattern: Pattern[str], query: str) -> Optional[str]:
    match = pattern.search(query)
    if match is None:
        return None
    return f"{match.group(1)}-{match.group(2)}"


class EntityExtractor:
    """Stateless extractor; every method is a pure function of the query."""

    def extract_typed_ids(self, query: str) -> Dict[str, str]:
        ids = {}
        for key, pattern in TYPED_ID_PATTERNS:
            value = _match_id(pattern, query)
            if value is not None:
                ids[key] = value
        return ids

    def extract_generic_id(self, query: str) -> Optional[str]:
        return _match_id(GENERIC_ID_PATTERN, query)

    def extract_target_status(self, query: str) -> Optional[str]:
        """
        Return the first status keyword, in vocabulary order, contained in the query.

        "closed then pending" yields "pending" because it precedes "closed" in
        the vocabulary.
        """
        query_lower = query.lower()
        for status in STATUS_KEYWORDS:
            if status in query_lower:
                return status
        return None

    def extract_entity_type(self, query: str) -> str:
        query_lower = query.lower()
        for entity_type in ENTITY_TYPES:
            if entity_type in query_lower:
                return entity_type
        return UNKNOWN_ENTITY_TYPE

    def extract(self, query: str) -> Dict[str, Any]:
        """
        Extract all entities from a query.

        Returns:
            Map with only the keys actually found, plus entity_type which is
            always present. entity_id never co-occurs with a typed id.
        """
        entities: Dict[str, Any] = dict(self.extract_typed_ids(query))

        if not entities:
            generic_id = self.extract_generic_id(query)
            if generic_id is not None:
                entities["entity_id"] = generic_id

        target_status = self.extract_target_status(query)
        if target_status is not None:
            entities["target_status"] = target_status

        entities["entity_type"] = self.extract_entity_type(query)

        logger.debug(
            "entities_extracted",
            keys=sorted(entities.keys()),
        )
        return entities


_entity_extractor: Optional[EntityExtractor] = None


def get_entity_extractor() -> EntityExtractor:
    """Global singleton accessor."""
    global _entity_extractor
    if _entity_extractor is None:
        _entity_extractor = EntityExtractor()
    return _entity_extractor
