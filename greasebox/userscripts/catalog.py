"""
greasebox/userscripts/catalog.py

Script catalog: loading userscripts from a directory and resolving them against URLs.

Contains:
- ScriptCatalog: Immutable, ordered set of validated ScriptRecords
- build_record(): Validate one script's text into a ScriptRecord (or None if unmatchable)
- USERSCRIPT_SUFFIX: File selection convention
"""

from collections.abc import Iterator
from pathlib import Path

from greasebox.data_models.userscript import InjectionPlan, RunAt, ScriptRecord
from greasebox.matching.match_pattern import CompiledMatcher, compile_match_pattern
from greasebox.userscripts.metadata import parse_metadata
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


USERSCRIPT_SUFFIX = ".user.js"


def build_record(path: str, source: str) -> ScriptRecord | None:
    """
    Parse and validate a script into a catalog record.

    Every @match pattern is compiled here; rejected patterns are dropped and the
    remaining ones still apply. A script left without any valid pattern is not a record.

    Args:
        path: Source path of the script (its identifier).
        source: Script text.

    Returns:
        ScriptRecord, or None if the script has no valid @match pattern.
    """
    filename = Path(path).name
    metadata = parse_metadata(source, filename)

    valid_patterns: list[str] = []
    for pattern in metadata.match_patterns:
        if isinstance(compile_match_pattern(pattern), CompiledMatcher):
            valid_patterns.append(pattern)
        else:
            logger.warning("Dropping invalid @match %r from script %r.", pattern, metadata.name)

    if not valid_patterns:
        logger.warning("Skipping script %r because it has no valid @match patterns.", filename)
        return None

    return ScriptRecord(
        path=path,
        name=metadata.name,
        source=source,
        match_patterns=tuple(valid_patterns),
        run_at=metadata.run_at,
        grants=metadata.grants,
        metadata=metadata,
    )


class ScriptCatalog:
    """
    The immutable set of parsed, validated scripts available for a run.

    Records keep their discovery order, which is also their injection order within a phase.

    Usage:
        catalog = ScriptCatalog.load_from_directory("./userscripts")
        plan = catalog.plan_for("https://example.com/")
    """

    def __init__(self, records: list[ScriptRecord] | tuple[ScriptRecord, ...] = ()) -> None:
        """
        Initialize the catalog.

        Args:
            records: Records in discovery order. Duplicate paths keep the first occurrence.
        """
        seen: set[str] = set()
        ordered: list[ScriptRecord] = []
        for record in records:
            if record.path in seen:
                logger.warning("Duplicate script path %s ignored.", record.path)
                continue
            seen.add(record.path)
            ordered.append(record)
        self._records: tuple[ScriptRecord, ...] = tuple(ordered)

    # Magic methods ________________________________________________________________________________

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ScriptRecord]:
        return iter(self._records)

    def __repr__(self) -> str:
        return f"ScriptCatalog({len(self._records)} scripts)"

    # Constructors _________________________________________________________________________________

    @classmethod
    def load_from_directory(cls, directory: str | Path) -> "ScriptCatalog":
        """
        Load every `*.user.js` file in a directory, in sorted filename order.

        A missing or unreadable directory yields an empty catalog; unreadable files are skipped.

        Args:
            directory: Directory containing userscripts.

        Returns:
            ScriptCatalog with the loadable scripts.
        """
        directory = Path(directory)
        try:
            files = sorted(
                entry for entry in directory.iterdir()
                if entry.name.endswith(USERSCRIPT_SUFFIX) and entry.is_file()
            )
        except FileNotFoundError:
            logger.warning("Userscript directory %s not found.", directory)
            return cls()
        except NotADirectoryError:
            logger.error("Userscript path %s is not a directory.", directory)
            return cls()
        except PermissionError:
            logger.warning("Permission denied reading userscript directory %s.", directory)
            return cls()
        except OSError as e:
            logger.error("Error reading userscript directory %s: %s", directory, e)
            return cls()

        records: list[ScriptRecord] = []
        for file_path in files:
            try:
                source = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.error("Error reading userscript file %s: %s", file_path, e)
                continue

            record = build_record(str(file_path), source)
            if record is not None:
                records.append(record)

        if records:
            logger.info("Loaded %d userscripts from %s.", len(records), directory)
        else:
            logger.info("No userscripts found or loaded from %s.", directory)
        return cls(records)

    # Public methods _______________________________________________________________________________

    @property
    def records(self) -> tuple[ScriptRecord, ...]:
        """All records in discovery order."""
        return self._records

    def matching(self, url: str) -> list[ScriptRecord]:
        """
        Records with at least one pattern matching the URL, in catalog order.

        Args:
            url: Target URL.

        Returns:
            Matching records (each at most once, regardless of how many patterns match).
        """
        matched: list[ScriptRecord] = []
        for record in self._records:
            for pattern in record.match_patterns:
                matcher = compile_match_pattern(pattern)
                if isinstance(matcher, CompiledMatcher) and matcher.matches(url):
                    matched.append(record)
                    break
        return matched

    def plan_for(self, url: str) -> InjectionPlan:
        """
        Build the injection plan for a target URL.

        Args:
            url: Target URL.

        Returns:
            InjectionPlan with the matching records partitioned by their own phase.
        """
        phases: dict[RunAt, list[ScriptRecord]] = {phase: [] for phase in RunAt}
        for record in self.matching(url):
            phases[record.run_at].append(record)
            logger.info("Scheduling %r for %s", record.name, record.run_at.value)

        if not self._records:
            logger.info("No userscripts were loaded, skipping matching.")

        return InjectionPlan(
            url=url,
            document_start=tuple(phases[RunAt.DOCUMENT_START]),
            document_end=tuple(phases[RunAt.DOCUMENT_END]),
            document_idle=tuple(phases[RunAt.DOCUMENT_IDLE]),
        )
