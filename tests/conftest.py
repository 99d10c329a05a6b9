"""
tests/conftest.py

Configuration for pytest.
"""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from greasebox.bridge.storage import StorageStore
from greasebox.data_models.userscript import ScriptRecord
from greasebox.userscripts.catalog import build_record

from fake_page import FakePage


@pytest.fixture(scope="session")
def tests_root() -> Path:
    """
    Root directory for tests.
    Returns:
        Path to the tests directory.
    """
    return Path(__file__).parent.resolve()


@pytest.fixture(scope="session")
def data_dir(tests_root: Path) -> Path:
    """
    Directory containing test data files.
    Returns:
        Path to tests/data.
    """
    return tests_root / "data"


@pytest.fixture(scope="session")
def userscripts_dir(data_dir: Path) -> Path:
    """
    Directory containing sample userscripts.
    Returns:
        Path to tests/data/input/userscripts.
    """
    return data_dir / "input" / "userscripts"


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture
def storage(tmp_path: Path) -> StorageStore:
    return StorageStore.load(tmp_path / "gm_storage.json")


@pytest.fixture
def make_script() -> Callable[..., ScriptRecord]:
    """
    Factory fixture to build a ScriptRecord from a few directives.

    Usage:
        record = make_script("Logger", matches=["*://example.com/*"], run_at="document-end")
    """
    def factory(
        name: str,
        matches: list[str] | None = None,
        run_at: str | None = None,
        body: str = "console.log('hi');",
        path: str | None = None,
    ) -> ScriptRecord:
        lines = ["// ==UserScript==", f"// @name {name}"]
        for pattern in matches if matches is not None else ["*://example.com/*"]:
            lines.append(f"// @match {pattern}")
        if run_at:
            lines.append(f"// @run-at {run_at}")
        lines.append("// ==/UserScript==")
        source = "\n".join(lines) + "\n" + body + "\n"
        record = build_record(path or f"/scripts/{name.lower().replace(' ', '_')}.user.js", source)
        assert record is not None
        return record

    return factory


@pytest.fixture
def mock_cdp_session() -> AsyncMock:
    session = AsyncMock()
    session.send = AsyncMock(return_value=1)
    session.send_and_wait = AsyncMock(return_value={})
    session.page_session_id = "session-1"
    session.is_connected = True
    session.on = MagicMock()
    session.off = MagicMock()
    session.on_disconnect = MagicMock()
    return session
