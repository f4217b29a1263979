"""Tests for context identity: domain normalization, page-set hash, context key."""

from __future__ import annotations

import pytest

from visibility_recs.errors import ValidationError
from visibility_recs.lifecycle.identity import (
    HOMEPAGE_ONLY,
    context_key,
    normalize_domain,
    normalize_path,
    page_set_hash,
)


class TestNormalizeDomain:
    @pytest.mark.parametrize("raw", [
        "example.com",
        "EXAMPLE.com",
        "www.example.com",
        "https://WWW.Example.com/",
        "http://example.com/about?x=1",
        "example.com:8443",
        "  example.com  ",
    ])
    def test_variants_collapse(self, raw):
        assert normalize_domain(raw) == "example.com"

    def test_subdomains_are_kept(self):
        assert normalize_domain("https://blog.example.com") == "blog.example.com"

    def test_empty(self):
        assert normalize_domain("") == ""
        assert normalize_domain("https://") == ""


class TestPageSetHash:
    def test_no_pages_is_homepage_only(self):
        assert page_set_hash(None) == HOMEPAGE_ONLY
        assert page_set_hash([]) == HOMEPAGE_ONLY
        assert page_set_hash(["", "  "]) == HOMEPAGE_ONLY

    def test_order_and_duplicates_do_not_matter(self):
        assert page_set_hash(["/a", "/b"]) == page_set_hash(["/b", "/a", "/a"])

    def test_full_urls_and_paths_hash_identically(self):
        assert page_set_hash(["https://x.com/pricing?plan=pro"]) == page_set_hash(["/pricing?plan=pro"])

    def test_hash_is_sixteen_hex(self):
        digest = page_set_hash(["/pricing"])
        assert len(digest) == 16
        int(digest, 16)

    def test_query_changes_hash(self):
        assert page_set_hash(["/a?x=1"]) != page_set_hash(["/a?x=2"])

    def test_bare_path_gets_leading_slash(self):
        assert normalize_path("about") == "/about"
        assert normalize_path("example.com/about") == "/about"


class TestContextKey:
    def test_deterministic_and_32_hex(self):
        key = context_key(42, "example.com", None)
        assert key == context_key(42, "https://www.example.com/", [])
        assert len(key) == 32
        int(key, 16)

    def test_account_and_pages_change_key(self):
        base = context_key(42, "example.com", None)
        assert context_key(43, "example.com", None) != base
        assert context_key(42, "example.com", ["/pricing"]) != base

    @pytest.mark.parametrize("account_id", [0, -1, None])
    def test_invalid_account_rejected(self, account_id):
        with pytest.raises(ValidationError) as exc_info:
            context_key(account_id, "example.com", None)
        assert exc_info.value.field == "account_id"

    def test_empty_domain_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            context_key(1, "   ", None)
        assert exc_info.value.field == "domain"
