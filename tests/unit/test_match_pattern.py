"""
tests/unit/test_match_pattern.py

Unit tests for match pattern compilation and URL matching.
"""

import pytest

from greasebox.matching.match_pattern import (
    CompiledMatcher,
    PatternRejection,
    RejectionReason,
    compile_match_pattern,
    normalize_url_for_matching,
    url_matches,
)


def _matcher(pattern: str) -> CompiledMatcher:
    result = compile_match_pattern(pattern)
    assert isinstance(result, CompiledMatcher), result
    return result


class TestCompileMatchPattern:
    """Compilation results and rejections."""

    def test_all_urls_compiles(self) -> None:
        matcher = _matcher("<all_urls>")
        assert matcher.matches("http://example.com/")
        assert matcher.matches("https://deep.sub.example.org/a/b?c=d")
        assert not matcher.matches("file:///etc/hosts")
        assert not matcher.matches("chrome://settings")

    @pytest.mark.parametrize(
        ("pattern", "reason"),
        [
            ("", RejectionReason.EMPTY),
            ("   ", RejectionReason.EMPTY),
            ("ftp://example.com/*", RejectionReason.UNSUPPORTED_SCHEME),
            ("file:///home/*", RejectionReason.UNSUPPORTED_SCHEME),
            ("example.com/*", RejectionReason.MALFORMED),
            ("https:///path", RejectionReason.MALFORMED),
            ("https://exa*mple.com/*", RejectionReason.INVALID_HOST_WILDCARD),
            ("https://*./*", RejectionReason.INVALID_HOST_WILDCARD),
            ("https://*.exa*mple.com/*", RejectionReason.INVALID_HOST_WILDCARD),
            ("https://www.*.com/*", RejectionReason.INVALID_HOST_WILDCARD),
        ],
    )
    def test_rejections(self, pattern: str, reason: RejectionReason) -> None:
        result = compile_match_pattern(pattern)
        assert isinstance(result, PatternRejection)
        assert result.reason == reason
        assert not result

    def test_rejection_never_raises_for_odd_input(self) -> None:
        for pattern in ["*://", "://example.com/", "https://", "<all_urls> ", "*"]:
            result = compile_match_pattern(pattern)
            assert isinstance(result, (CompiledMatcher, PatternRejection))

    def test_bare_wildcard_host_is_allowed(self) -> None:
        matcher = _matcher("*://*/*")
        assert matcher.matches("https://anything.test/x")
        assert matcher.matches("http://localhost/")

    def test_compiled_matcher_is_callable(self) -> None:
        matcher = _matcher("https://example.com/*")
        assert matcher("https://example.com/page")


class TestSchemeMatching:

    def test_star_scheme_matches_http_and_https(self) -> None:
        matcher = _matcher("*://example.com/*")
        assert matcher.matches("http://example.com/")
        assert matcher.matches("https://example.com/")

    def test_explicit_scheme_is_exact(self) -> None:
        matcher = _matcher("http://example.com/*")
        assert matcher.matches("http://example.com/a")
        assert not matcher.matches("https://example.com/a")


class TestHostMatching:

    def test_subdomain_wildcard_matches_domain_and_any_depth(self) -> None:
        matcher = _matcher("*://*.example.com/*")
        assert matcher.matches("https://example.com/")
        assert matcher.matches("https://www.example.com/")
        assert matcher.matches("https://a.b.c.example.com/path")

    def test_subdomain_wildcard_does_not_match_suffix_lookalikes(self) -> None:
        matcher = _matcher("*://*.example.com/*")
        assert not matcher.matches("https://notexample.com/")
        assert not matcher.matches("https://example.com.evil.net/")

    def test_literal_host_is_exact_and_case_insensitive(self) -> None:
        matcher = _matcher("https://EXAMPLE.com/*")
        assert matcher.matches("https://example.COM/x")
        assert not matcher.matches("https://www.example.com/x")

    def test_pattern_without_port_rejects_explicit_non_default_port(self) -> None:
        matcher = _matcher("https://example.com/*")
        assert not matcher.matches("https://example.com:8443/")
        assert matcher.matches("https://example.com:443/")

    def test_pattern_with_port(self) -> None:
        matcher = _matcher("http://localhost:8080/*")
        assert matcher.matches("http://localhost:8080/app")
        assert not matcher.matches("http://localhost/app")

    def test_ipv6_host(self) -> None:
        matcher = _matcher("http://[::1]:8080/*")
        assert matcher.matches("http://[::1]:8080/status")


class TestPathMatching:

    def test_path_wildcard(self) -> None:
        matcher = _matcher("https://example.com/foo*")
        assert matcher.matches("https://example.com/foo")
        assert matcher.matches("https://example.com/foobar/baz")
        assert not matcher.matches("https://example.com/bar")

    def test_path_without_wildcard_is_exact(self) -> None:
        matcher = _matcher("https://example.com/a")
        assert matcher.matches("https://example.com/a")
        assert not matcher.matches("https://example.com/a/b")

    def test_missing_path_matches_any_path(self) -> None:
        matcher = _matcher("https://example.com")
        assert matcher.matches("https://example.com")
        assert matcher.matches("https://example.com/deep/page")

    def test_fragment_never_takes_part(self) -> None:
        matcher = _matcher("https://example.com/a")
        assert matcher.matches("https://example.com/a#section-2")

    def test_query_string_is_matched(self) -> None:
        matcher = _matcher("https://example.com/search?q=*")
        assert matcher.matches("https://example.com/search?q=greasebox")
        assert not matcher.matches("https://example.com/search")

    def test_regex_metacharacters_are_literal(self) -> None:
        matcher = _matcher("https://example.com/a+b(c)/*")
        assert matcher.matches("https://example.com/a+b(c)/x")
        assert not matcher.matches("https://example.com/aab(c)/x")


class TestNormalizeUrlForMatching:

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://Example.com", "https://example.com/"),
            ("https://example.com:443/a?b=1#c", "https://example.com/a?b=1"),
            ("http://user:pw@example.com/x", "http://example.com/x"),
            ("http://example.com:8080/", "http://example.com:8080/"),
            ("https://example.com/a?", "https://example.com/a"),
        ],
    )
    def test_normalization(self, url: str, expected: str) -> None:
        assert normalize_url_for_matching(url) == expected

    @pytest.mark.parametrize("url", ["not a url", "ftp://example.com/", "http://[::1", "about:blank", ""])
    def test_unmatchable_urls(self, url: str) -> None:
        assert normalize_url_for_matching(url) is None


class TestUrlMatches:

    def test_any_pattern_matching_is_enough(self) -> None:
        patterns = ["https://example.org/*", "*://*.example.com/*"]
        assert url_matches(patterns, "https://www.example.com/")

    def test_invalid_patterns_are_skipped(self) -> None:
        assert url_matches(["ftp://example.com/*", "https://example.com/*"], "https://example.com/")
        assert not url_matches(["ftp://example.com/*"], "https://example.com/")

    def test_empty_pattern_list_never_matches(self) -> None:
        assert not url_matches([], "https://example.com/")
