"""
greasebox/userscripts/metadata.py

Userscript metadata block parsing.

Contains:
- parse_metadata(): Extract the `// ==UserScript==` block into a ScriptMetadata
- parse_directives(): Raw key -> ordered values mapping for the lines of a block

Example block:

    // ==UserScript==
    // @name        Example Logger
    // @match       *://example.com/*
    // @grant       GM_getValue
    // @grant       GM_setValue
    // @run-at      document-end
    // ==/UserScript==
"""

import re
from collections import defaultdict

from greasebox.data_models.userscript import DEFAULT_RUN_AT, RunAt, ScriptMetadata
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


METADATA_BLOCK_RE = re.compile(r"//\s*==UserScript==(?P<body>[\s\S]*?)//\s*==/UserScript==")
_DIRECTIVE_RE = re.compile(r"^//\s*@(?P<key>\S+)(?:\s+(?P<value>.*))?$")


def parse_directives(block_body: str) -> dict[str, tuple[str, ...]]:
    """
    Parse the directive lines of a metadata block.

    Repeated keys accumulate in declaration order instead of overwriting.
    A directive without a value (e.g. `@noframes`) is kept with an empty string.

    Args:
        block_body: Text between the start and end markers.

    Returns:
        Mapping of directive key to its values.
    """
    directives: defaultdict[str, list[str]] = defaultdict(list)
    for line in block_body.splitlines():
        match = _DIRECTIVE_RE.match(line.strip())
        if match is None:
            continue
        directives[match.group("key")].append((match.group("value") or "").strip())
    return {key: tuple(values) for key, values in directives.items()}


def _first_non_empty(values: tuple[str, ...]) -> str | None:
    for value in values:
        if value:
            return value
    return None


def _resolve_run_at(values: tuple[str, ...], name: str) -> RunAt:
    if not values or not values[0]:
        return DEFAULT_RUN_AT
    candidate = values[0].lower()
    try:
        return RunAt(candidate)
    except ValueError:
        logger.warning(
            "Invalid @run-at value %r in script %r. Defaulting to %r.",
            values[0], name, DEFAULT_RUN_AT.value,
        )
        return DEFAULT_RUN_AT


def parse_metadata(source: str, filename: str) -> ScriptMetadata:
    """
    Parse a userscript's metadata block.

    A script without a block gets zero match patterns (so the catalog drops it),
    the default run-at phase, and its filename as name.

    Args:
        source: Full script text.
        filename: File name used as the fallback display name.

    Returns:
        ScriptMetadata with typed known directives and the raw directive mapping.
    """
    block = METADATA_BLOCK_RE.search(source)
    if block is None:
        logger.warning("Could not find metadata block in script %r.", filename)
        return ScriptMetadata(name=filename, has_block=False)

    raw = parse_directives(block.group("body"))
    name = _first_non_empty(raw.get("name", ())) or filename

    match_patterns = tuple(value for value in raw.get("match", ()) if value)
    if not match_patterns:
        logger.warning("Script %r has no @match rules. It will not run.", name)

    return ScriptMetadata(
        name=name,
        match_patterns=match_patterns,
        run_at=_resolve_run_at(raw.get("run-at", ()), name),
        grants=tuple(value for value in raw.get("grant", ()) if value),
        namespace=_first_non_empty(raw.get("namespace", ())),
        version=_first_non_empty(raw.get("version", ())),
        description=_first_non_empty(raw.get("description", ())),
        raw=raw,
    )
