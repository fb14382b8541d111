"""
Unit tests for pattern-based task classification.
"""
import pytest

from opsguide.models.domain import OperationalRequest, TaskId, UseCase
from opsguide.services.classification.pattern_classifier import (
    CONFIDENCE_MATCHED,
    CONFIDENCE_UNMATCHED,
    DEFAULT_SERVICE,
    PatternClassifier,
)


@pytest.fixture
def classifier():
    return PatternClassifier()


def _request(query: str, environment: str = "dev") -> OperationalRequest:
    return OperationalRequest(
        request_id="req-1",
        user_id="user-1",
        query=query,
        environment=environment,
    )


@pytest.mark.parametrize(
    "query,expected",
    [
        ("cancel order ORDER-2024-001", TaskId.CANCEL_ORDER),
        ("order 55 needs a cancel", TaskId.CANCEL_ORDER),
        ("abort the order", TaskId.CANCEL_ORDER),
        ("change order status to completed", TaskId.UPDATE_ORDER_STATUS),
        ("cancel case CASE-2024-001", TaskId.CANCEL_CASE),
        ("close the case", TaskId.CANCEL_CASE),
        ("change case status to completed", TaskId.UPDATE_CASE_STATUS),
        ("set case CASE-2024-001 status to on_hold", TaskId.UPDATE_CASE_STATUS),
        ("update samples within case", TaskId.UPDATE_SAMPLES),
        ("update stain of a slide", TaskId.UPDATE_STAIN),
    ],
)
def test_identify_task(classifier, query, expected):
    assert classifier.identify_task(query) == expected


def test_keyword_fallback_when_no_pattern_matches(classifier):
    # No word-boundary pattern matches "cancellation" or "orders"
    assert classifier.identify_task("cancellation of orders pending") == TaskId.CANCEL_ORDER


def test_classify_matched_request(classifier):
    result = classifier.classify(_request("cancel order ORDER-2024-001"))

    assert result.use_case == UseCase.OPERATIONAL_ASK
    assert result.task_id == TaskId.CANCEL_ORDER
    assert result.confidence == CONFIDENCE_MATCHED
    assert result.service == "Order"
    assert result.extracted_entities["order_id"] == "2024-001"
    assert result.extracted_entities["service"] == "Order"


def test_classify_unmatched_request(classifier):
    result = classifier.classify(_request("what is the weather today"))

    assert result.task_id is None
    assert result.confidence == CONFIDENCE_UNMATCHED
    assert result.service == DEFAULT_SERVICE
    assert result.extracted_entities["entity_type"] == "unknown"


@pytest.mark.parametrize(
    "query,expected",
    [
        ("cancel order ORDER-2024-001 in production", "prod"),
        ("cancel order ORDER-2024-001 on staging", "staging"),
        ("cancel order on dev-eu1", "dev"),
    ],
)
def test_environment_from_query(classifier, query, expected):
    assert classifier.classify(_request(query, environment="other")).environment == expected


def test_environment_defaults_to_request(classifier):
    result = classifier.classify(_request("cancel case CASE-2024-001", environment="staging"))

    assert result.environment == "staging"


def test_service_first_match_wins(classifier):
    # Slide is declared before Stain
    assert classifier.identify_service("update stain of a slide") == "Slide"
    assert classifier.identify_service("update stain") == "Stain"
