"""
tests/unit/test_metadata.py

Unit tests for userscript metadata parsing.
"""

from greasebox.data_models.userscript import DEFAULT_RUN_AT, RunAt
from greasebox.userscripts.metadata import parse_directives, parse_metadata


FULL_SCRIPT = """\
// ==UserScript==
// @name         Example Logger
// @namespace    greasebox.tests
// @version      1.2.3
// @description  Logs things
// @match        *://example.com/*
// @match        https://*.example.org/*
// @grant        GM_getValue
// @grant        GM_setValue
// @run-at       document-end
// @noframes
// ==/UserScript==

console.log('hello');
"""


class TestParseMetadata:
    """Tests for parse_metadata()."""

    def test_full_block(self) -> None:
        metadata = parse_metadata(FULL_SCRIPT, "example.user.js")
        assert metadata.has_block
        assert metadata.name == "Example Logger"
        assert metadata.namespace == "greasebox.tests"
        assert metadata.version == "1.2.3"
        assert metadata.description == "Logs things"
        assert metadata.match_patterns == ("*://example.com/*", "https://*.example.org/*")
        assert metadata.grants == ("GM_getValue", "GM_setValue")
        assert metadata.run_at is RunAt.DOCUMENT_END

    def test_repeated_keys_accumulate_in_order(self) -> None:
        metadata = parse_metadata(FULL_SCRIPT, "example.user.js")
        assert metadata.raw["match"] == ("*://example.com/*", "https://*.example.org/*")

    def test_valueless_directive_is_kept(self) -> None:
        metadata = parse_metadata(FULL_SCRIPT, "example.user.js")
        assert metadata.raw["noframes"] == ("",)

    def test_no_block_uses_filename_and_defaults(self) -> None:
        metadata = parse_metadata("console.log('no metadata');", "bare.user.js")
        assert not metadata.has_block
        assert metadata.name == "bare.user.js"
        assert metadata.match_patterns == ()
        assert metadata.run_at is DEFAULT_RUN_AT

    def test_missing_name_falls_back_to_filename(self) -> None:
        source = "// ==UserScript==\n// @match *://example.com/*\n// ==/UserScript==\n"
        assert parse_metadata(source, "nameless.user.js").name == "nameless.user.js"

    def test_invalid_run_at_falls_back_to_default(self) -> None:
        source = (
            "// ==UserScript==\n// @name X\n// @match *://example.com/*\n"
            "// @run-at document-whenever\n// ==/UserScript==\n"
        )
        assert parse_metadata(source, "x.user.js").run_at is DEFAULT_RUN_AT

    def test_run_at_is_case_insensitive(self) -> None:
        source = "// ==UserScript==\n// @name X\n// @run-at Document-Idle\n// ==/UserScript==\n"
        assert parse_metadata(source, "x.user.js").run_at is RunAt.DOCUMENT_IDLE

    def test_only_first_block_is_read(self) -> None:
        source = (
            "// ==UserScript==\n// @name First\n// ==/UserScript==\n"
            "// ==UserScript==\n// @name Second\n// ==/UserScript==\n"
        )
        assert parse_metadata(source, "x.user.js").name == "First"

    def test_unterminated_block_is_no_block(self) -> None:
        source = "// ==UserScript==\n// @name Broken\n// @match *://example.com/*\n"
        metadata = parse_metadata(source, "broken.user.js")
        assert not metadata.has_block
        assert metadata.match_patterns == ()

    def test_block_not_at_top_of_file(self) -> None:
        source = "'use strict';\n\n// ==UserScript==\n// @name Late\n// ==/UserScript==\n"
        assert parse_metadata(source, "late.user.js").name == "Late"

    def test_crlf_line_endings(self) -> None:
        source = "// ==UserScript==\r\n// @name   Windows\r\n// @match  *://example.com/*\r\n// ==/UserScript==\r\n"
        metadata = parse_metadata(source, "win.user.js")
        assert metadata.name == "Windows"
        assert metadata.match_patterns == ("*://example.com/*",)


class TestParseDirectives:

    def test_ignores_non_directive_lines(self) -> None:
        body = "\n// just a comment\n// @name  Test\nnot a comment\n//@grant none\n"
        assert parse_directives(body) == {"name": ("Test",), "grant": ("none",)}

    def test_value_whitespace_is_trimmed(self) -> None:
        assert parse_directives("// @name    Padded   \n") == {"name": ("Padded",)}
