"""
greasebox/data_models/userscript.py

Data models for userscripts and per-run injection plans.

Contains:
- RunAt: The three injection phases (document-start, document-end, document-idle)
- ScriptMetadata: Parsed metadata block of one script (typed known directives + raw mapping)
- ScriptRecord: Immutable catalog entry for one loadable script
- InjectionPlan: Matching scripts for one URL, partitioned by phase in catalog order
- ScriptDeliveryState: Per-script delivery state tracked by the injection scheduler
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RunAt(StrEnum):
    """Page lifecycle moment at which a script is delivered."""
    DOCUMENT_START = "document-start"
    DOCUMENT_END = "document-end"
    DOCUMENT_IDLE = "document-idle"


DEFAULT_RUN_AT = RunAt.DOCUMENT_START


class ScriptDeliveryState(StrEnum):
    """Delivery state of a script within one run."""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED_SILENTLY = "failed-silently"


class ScriptMetadata(BaseModel):
    """
    Result of parsing a script's `// ==UserScript==` block.

    Known directives are normalized into typed fields; every directive, known or not,
    is also kept verbatim in `raw` (key -> values in declaration order).
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(description="@name, or the filename when absent/empty")
    match_patterns: tuple[str, ...] = Field(
        default=(),
        description="@match values in declaration order (not yet validated)",
    )
    run_at: RunAt = Field(default=DEFAULT_RUN_AT, description="Normalized @run-at")
    grants: tuple[str, ...] = Field(default=(), description="@grant values")
    namespace: str | None = Field(default=None, description="@namespace")
    version: str | None = Field(default=None, description="@version")
    description: str | None = Field(default=None, description="@description")
    raw: dict[str, tuple[str, ...]] = Field(
        default_factory=dict,
        description="Every directive key -> all of its values, including unknown keys",
    )
    has_block: bool = Field(default=True, description="Whether a metadata block was found at all")


class ScriptRecord(BaseModel):
    """
    One userscript in the catalog.

    Created once when the catalog is loaded and never mutated afterwards.
    `match_patterns` only holds patterns that compiled successfully, and is never empty.
    """
    model_config = ConfigDict(frozen=True)

    path: str = Field(description="Source path, also the stable identifier of the record")
    name: str = Field(description="Display name")
    source: str = Field(description="Raw script text", repr=False)
    match_patterns: tuple[str, ...] = Field(min_length=1, description="Valid @match patterns")
    run_at: RunAt = Field(default=DEFAULT_RUN_AT)
    grants: tuple[str, ...] = Field(default=())
    metadata: ScriptMetadata = Field(repr=False)

    @property
    def id(self) -> str:
        """Stable identifier of the record."""
        return self.path

    def gm_info(self) -> dict[str, Any]:
        """
        Build the `GM_info.script` object exposed to this script in the page.

        Returns:
            JSON-serializable dict mirroring the script's metadata.
        """
        return {
            "name": self.name,
            "namespace": self.metadata.namespace,
            "version": self.metadata.version,
            "description": self.metadata.description,
            "matches": list(self.match_patterns),
            "grant": list(self.grants),
            "run-at": self.run_at.value,
            "resources": [],
            "requires": [],
        }


class InjectionPlan(BaseModel):
    """
    Scripts matching one target URL, partitioned by injection phase.

    Each record appears only in the phase named by its own run_at, and the relative
    order inside a phase is the catalog discovery order.
    """
    model_config = ConfigDict(frozen=True)

    url: str
    document_start: tuple[ScriptRecord, ...] = ()
    document_end: tuple[ScriptRecord, ...] = ()
    document_idle: tuple[ScriptRecord, ...] = ()

    def for_phase(self, run_at: RunAt) -> tuple[ScriptRecord, ...]:
        """Return the scripts scheduled for the given phase."""
        match run_at:
            case RunAt.DOCUMENT_START:
                return self.document_start
            case RunAt.DOCUMENT_END:
                return self.document_end
            case RunAt.DOCUMENT_IDLE:
                return self.document_idle
        raise ValueError(f"Unknown run-at phase: {run_at}")

    @property
    def all_scripts(self) -> tuple[ScriptRecord, ...]:
        """Every planned script, phase by phase."""
        return self.document_start + self.document_end + self.document_idle

    @property
    def is_empty(self) -> bool:
        return not self.all_scripts
