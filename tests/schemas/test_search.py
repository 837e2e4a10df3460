"""Tests for search schemas."""

from datetime import datetime, timezone

import pytest
from pydantic import TypeAdapter, ValidationError

from mail_search.repository.records import ClaimRecord, MessageRecord
from mail_search.schemas.search import (
    ClaimResult,
    EntityKind,
    EntityResult,
    MessageResult,
    ScopeFilter,
    SearchQuery,
    SearchResponse,
    SearchResultItem,
)


def test_search_query_defaults():
    query = SearchQuery(entity_kind="message", query_text="  budget review \n")

    assert query.entity_kind == EntityKind.MESSAGE
    assert query.query_text == "budget review"
    assert query.query_vector is None
    assert query.limit == 10
    assert query.threshold is None
    assert query.vector_weight == 0.5
    assert query.scope.is_empty()


def test_search_query_rejects_unknown_kind():
    with pytest.raises(ValidationError):
        SearchQuery(entity_kind="attachment", query_text="budget")


def test_scope_filter_is_empty():
    assert ScopeFilter().is_empty()
    assert ScopeFilter(account_ids=[], thread_ids=[]).is_empty()
    assert not ScopeFilter(organization_id="org-1").is_empty()
    assert not ScopeFilter(claim_types=["decision"]).is_empty()


def test_results_built_from_records():
    sent_at = datetime(2024, 9, 2, 9, 0, tzinfo=timezone.utc)
    message = MessageResult.model_validate(
        MessageRecord(id="m-1", thread_id="thread-1", subject="Q3 budget", sent_at=sent_at)
    )
    assert message.kind == "message"
    assert message.subject == "Q3 budget"
    assert message.sent_at == sent_at

    claim = ClaimResult.model_validate(
        ClaimRecord(id="c-1", organization_id="org-1", type="decision", text="Cut costs")
    )
    assert claim.kind == "claim"
    assert claim.thread_id is None


def test_entity_result_discriminator():
    adapter = TypeAdapter(EntityResult)

    parsed = adapter.validate_python(
        {"kind": "claim", "id": "c-1", "organization_id": "org-1", "type": "question", "text": "?"}
    )
    assert isinstance(parsed, ClaimResult)

    with pytest.raises(ValidationError):
        adapter.validate_python({"kind": "attachment", "id": "x"})


def test_search_response_json_round_trip():
    response = SearchResponse(
        entity_kind=EntityKind.MESSAGE,
        results=[
            SearchResultItem(
                item=MessageResult(id="m-1", thread_id="thread-1"),
                rrf_score=0.016,
                vector_similarity=0.93,
                vector_rank=1,
                lexical_rank=2,
            )
        ],
        query_embedding_cached=True,
    )

    restored = SearchResponse.model_validate_json(response.model_dump_json())

    assert restored == response
    assert isinstance(restored.results[0].item, MessageResult)
