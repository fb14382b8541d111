"""Request classification: entity extraction and pattern-based task identification."""
from opsguide.services.classification.entity_extraction import (
    EntityExtractor,
    get_entity_extractor,
)
from opsguide.services.classification.pattern_classifier import (
    PatternClassifier,
    get_pattern_classifier,
)

__all__ = [
    "EntityExtractor",
    "get_entity_extractor",
    "PatternClassifier",
    "get_pattern_classifier",
]
