"""
greasebox/matching/match_pattern.py

Match pattern compiler and URL matching.

Contains:
- compile_match_pattern(): Turn a `@match` pattern into a CompiledMatcher or a PatternRejection
- normalize_url_for_matching(): Reduce a URL to origin + pathname + search
- url_matches(): True if a URL matches any of a list of patterns

Grammar:
    <all_urls>
    (*|http|https)://<host>[/<path>]

    host: `*` (any host), `*.domain` (domain and any subdomain chain), or a literal host
    path: literal text where `*` matches any sequence, possibly empty

Compilation never raises: an invalid pattern produces a PatternRejection describing why.
"""

import re
from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache
from urllib.parse import urlsplit

from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


ALL_URLS = "<all_urls>"
MATCHABLE_SCHEMES = ("http", "https")
_DEFAULT_PORTS = {"http": 80, "https": 443}

_PATTERN_RE = re.compile(r"^(?P<scheme>\*|https?)://(?P<host>[^/]+)(?P<path>/.*)?$")
_SCHEME_PREFIX_RE = re.compile(r"^(?P<scheme>[A-Za-z][A-Za-z0-9+.\-]*|\*)://")


class RejectionReason(StrEnum):
    """Why a match pattern failed to compile."""
    EMPTY = "empty"
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    MALFORMED = "malformed"
    INVALID_HOST_WILDCARD = "invalid_host_wildcard"


@dataclass(frozen=True, slots=True)
class PatternRejection:
    """A pattern that could not be compiled."""
    pattern: str
    reason: RejectionReason
    message: str

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class CompiledMatcher:
    """
    A compiled match pattern: a pure predicate over URLs.

    The regex is applied to the normalized form of a URL (origin + pathname + search),
    so the fragment never takes part in matching and non-http(s) URLs never match.
    """
    pattern: str
    regex: re.Pattern[str]

    def matches(self, url: str) -> bool:
        """Return True if `url` matches this pattern."""
        normalized = normalize_url_for_matching(url)
        if normalized is None:
            return False
        return self.regex.fullmatch(normalized) is not None

    def __call__(self, url: str) -> bool:
        return self.matches(url)


# Private functions _______________________________________________________________________________

def _reject(pattern: str, reason: RejectionReason, message: str) -> PatternRejection:
    logger.warning("Rejected match pattern %r: %s", pattern, message)
    return PatternRejection(pattern=pattern, reason=reason, message=message)


def _host_regex(pattern: str, host: str) -> str | PatternRejection:
    """Translate the host part of a pattern into a regex fragment."""
    host = host.lower()

    if host == "*":
        logger.warning(
            "Match pattern %r uses a bare wildcard host ('*'); matching any host for compatibility.",
            pattern,
        )
        return r"[^/]+"

    if host.startswith("*."):
        domain = host[2:]
        if not domain or "*" in domain:
            return _reject(
                pattern,
                RejectionReason.INVALID_HOST_WILDCARD,
                f"invalid wildcard usage in host {host!r}",
            )
        # optional chain of non-empty subdomain labels, then the literal domain
        return r"(?:[^/.:@]+\.)*" + re.escape(domain)

    if "*" in host:
        return _reject(
            pattern,
            RejectionReason.INVALID_HOST_WILDCARD,
            f"'*' is only allowed as the whole host or as a leading '*.' in {host!r}",
        )

    return re.escape(host)


def _path_regex(path: str | None) -> str:
    """Translate the path part of a pattern into a regex fragment."""
    if not path:
        return r"(?:/.*)?"
    return re.escape(path).replace(r"\*", ".*")


# Exports _________________________________________________________________________________________

@lru_cache(maxsize=1024)
def compile_match_pattern(pattern: str) -> CompiledMatcher | PatternRejection:
    """
    Compile a match pattern.

    Args:
        pattern: A `@match` value, e.g. "*://*.example.com/*" or "<all_urls>".

    Returns:
        CompiledMatcher on success, PatternRejection (falsy) otherwise. Never raises.
    """
    if not isinstance(pattern, str) or not pattern.strip():
        return _reject(str(pattern), RejectionReason.EMPTY, "pattern is empty")

    pattern = pattern.strip()

    if pattern == ALL_URLS:
        return CompiledMatcher(pattern=pattern, regex=re.compile(r"https?://.*"))

    parsed = _PATTERN_RE.match(pattern)
    if parsed is None:
        scheme = _SCHEME_PREFIX_RE.match(pattern)
        if scheme is not None and scheme.group("scheme").lower() not in ("*",) + MATCHABLE_SCHEMES:
            return _reject(
                pattern,
                RejectionReason.UNSUPPORTED_SCHEME,
                f"scheme {scheme.group('scheme')!r} is not supported (only *, http, https)",
            )
        return _reject(
            pattern,
            RejectionReason.MALFORMED,
            "pattern must look like scheme://host/path",
        )

    scheme = parsed.group("scheme")
    scheme_regex = "https?" if scheme == "*" else scheme

    host_regex = _host_regex(pattern, parsed.group("host"))
    if isinstance(host_regex, PatternRejection):
        return host_regex

    path_regex = _path_regex(parsed.group("path"))

    try:
        regex = re.compile(f"{scheme_regex}://{host_regex}{path_regex}")
    except re.error as e:
        return _reject(pattern, RejectionReason.MALFORMED, f"could not build regex: {e}")

    return CompiledMatcher(pattern=pattern, regex=regex)


def normalize_url_for_matching(url: str) -> str | None:
    """
    Reduce a URL to `origin + pathname + search`, the string patterns are matched against.

    The fragment and any userinfo are dropped, the host is lower-cased, a default port is
    removed and an empty path becomes "/".

    Args:
        url: Candidate URL.

    Returns:
        Normalized URL string, or None for unparseable or non-http(s) URLs.
    """
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except (ValueError, AttributeError):
        logger.debug("Invalid URL provided for matching: %r", url)
        return None

    scheme = parts.scheme.lower()
    if scheme not in MATCHABLE_SCHEMES or not parts.hostname:
        return None

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"

    path = parts.path or "/"
    search = f"?{parts.query}" if parts.query else ""
    return f"{scheme}://{host}{path}{search}"


def url_matches(patterns: list[str] | tuple[str, ...], url: str) -> bool:
    """
    Check whether a URL matches any of the given patterns.

    Invalid patterns are skipped (they can never match).

    Args:
        patterns: Match pattern strings.
        url: Candidate URL.

    Returns:
        True if at least one pattern matches.
    """
    for pattern in patterns:
        matcher = compile_match_pattern(pattern)
        if isinstance(matcher, CompiledMatcher) and matcher.matches(url):
            return True
    return False
