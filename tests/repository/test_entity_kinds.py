"""Tests for the per-kind table layout and scope SQL helpers."""

import pytest

from mail_search.errors import InvalidArgumentError
from mail_search.repository.entity_kinds import (
    ENTITY_KIND_HANDLERS,
    LEXICAL_SCOPE_COLUMNS,
    bind_list,
    build_scope_conditions,
    get_handler,
    validate_scope,
)
from mail_search.schemas.search import EntityKind, ScopeFilter


def test_every_kind_has_a_handler():
    assert set(ENTITY_KIND_HANDLERS) == set(EntityKind)
    assert get_handler("thread").embedding_table == "thread_embedding"
    assert get_handler(EntityKind.CLAIM).owner_column == "claim_id"
    assert get_handler("thread").is_thread
    assert not get_handler("message").is_thread


def test_unknown_kind():
    with pytest.raises(InvalidArgumentError):
        get_handler("attachment")


def test_bind_list():
    params: dict = {}
    placeholders = bind_list("ids", ["a", "b", "c"], params)

    assert placeholders == ":ids_0, :ids_1, :ids_2"
    assert params == {"ids_0": "a", "ids_1": "b", "ids_2": "c"}


def test_build_scope_conditions():
    params: dict = {}
    scope = ScopeFilter(account_ids=["acct-1", "acct-2"], organization_id="org-1")

    conditions = build_scope_conditions(scope, LEXICAL_SCOPE_COLUMNS, params)

    assert conditions == [
        "lexical_index.account_id IN (:scope_account_ids_0, :scope_account_ids_1)",
        "lexical_index.organization_id = :scope_organization_id",
    ]
    assert params["scope_organization_id"] == "org-1"


def test_empty_scope_builds_no_conditions():
    params: dict = {}
    assert build_scope_conditions(None, LEXICAL_SCOPE_COLUMNS, params) == []
    assert build_scope_conditions(ScopeFilter(account_ids=[]), LEXICAL_SCOPE_COLUMNS, params) == []
    assert params == {}


def test_validate_scope():
    validate_scope(EntityKind.CLAIM, ScopeFilter(claim_types=["decision"]))
    validate_scope(EntityKind.MESSAGE, None)
    validate_scope(EntityKind.MESSAGE, ScopeFilter(claim_types=[]))

    with pytest.raises(InvalidArgumentError):
        validate_scope(EntityKind.THREAD, ScopeFilter(claim_types=["decision"]))
