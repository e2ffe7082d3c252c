"""Unit tests for cache key construction."""

from __future__ import annotations

import pytest
from starlette.requests import Request

from safecache.cache.keys import (
    cache_key,
    counter_key,
    entity_tag,
    escape_pattern,
    rate_limit_key,
    response_cache_key,
    user_flag_key,
)


pytestmark = pytest.mark.unit


def make_request(path: str = "/api/v1/posts", query: str = "") -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": path,
            "query_string": query.encode(),
            "headers": [],
        }
    )


class TestKeyFamilies:
    """Tests for the fixed key families."""

    def test_cache_key_joins_parts(self) -> None:
        assert cache_key("post", 12, "likes") == "post:12:likes"

    def test_counter_key(self) -> None:
        assert counter_key("abc", "likes") == "post:abc:likes"

    def test_user_flag_key(self) -> None:
        assert user_flag_key("u1", "p1") == "user:u1:like:p1"
        assert user_flag_key("u1", "p1", "bookmark") == "user:u1:bookmark:p1"

    def test_rate_limit_key(self) -> None:
        assert rate_limit_key("like", "user:u1", "p1") == "rl:like:user:u1:p1"


class TestResponseCacheKey:
    """Tests for response_cache_key."""

    def test_path_and_query(self) -> None:
        """Should include the path and the query string."""
        key = response_cache_key(make_request(query="page=2"))

        assert key == "cache:/api/v1/posts:page=2"

    def test_query_order_does_not_matter(self) -> None:
        """Should produce one key for reordered parameters."""
        first = response_cache_key(make_request(query="b=2&a=1&a=0"))
        second = response_cache_key(make_request(query="a=0&b=2&a=1"))

        assert first == second

    def test_different_queries_differ(self) -> None:
        """Should separate distinct queries."""
        assert response_cache_key(make_request(query="page=1")) != response_cache_key(
            make_request(query="page=2")
        )

    def test_user_suffix(self) -> None:
        """Should append the user id when given."""
        key = response_cache_key(make_request(), user_id="u1")

        assert key == "cache:/api/v1/posts::user=u1"


class TestEntityTag:
    """Tests for entity_tag."""

    def test_is_quoted_and_stable(self) -> None:
        tag = entity_tag("k", b"{}")

        assert tag.startswith('"')
        assert tag.endswith('"')
        assert tag == entity_tag("k", b"{}")

    def test_changes_with_body(self) -> None:
        assert entity_tag("k", b"{}") != entity_tag("k", b"[]")


class TestEscapePattern:
    """Tests for glob escaping of substituted values."""

    def test_plain_value_unchanged(self) -> None:
        assert escape_pattern("post-42") == "post-42"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("*", r"\*"),
            ("a?b", r"a\?b"),
            ("[ab]", r"\[ab\]"),
            ("back\\slash", r"back\\slash"),
        ],
    )
    def test_escapes_glob_characters(self, value: str, expected: str) -> None:
        assert escape_pattern(value) == expected
