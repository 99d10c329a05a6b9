"""
greasebox/injection/script_wrapper.py

Turns catalog records into the exact source that runs in the page.

Contains:
- wrap_script(): Enclose a userscript with its own GM_info and a sourceURL
- load_page_runtime(): Read the GM_* page runtime (js/gm_api_polyfill.js)
"""

import json
from pathlib import Path
from urllib.parse import quote

from greasebox.data_models.userscript import ScriptRecord
from greasebox.userscripts.metadata import METADATA_BLOCK_RE
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


SCRIPT_HANDLER = "greasebox"
SCRIPT_HANDLER_VERSION = "0.1.0"
DEFAULT_PAGE_RUNTIME_PATH = Path(__file__).resolve().parent.parent / "js" / "gm_api_polyfill.js"


def source_url_for(record: ScriptRecord) -> str:
    """Stable sourceURL so page errors point at the script file."""
    return f"greasebox://userscripts/{quote(Path(record.path).name)}"


def build_gm_info(record: ScriptRecord) -> dict:
    block = METADATA_BLOCK_RE.search(record.source)
    return {
        "script": record.gm_info(),
        "scriptMetaStr": block.group(0) if block else "",
        "scriptHandler": SCRIPT_HANDLER,
        "version": SCRIPT_HANDLER_VERSION,
        "injectInto": "page",
    }


def wrap_script(record: ScriptRecord) -> str:
    """
    Wrap a userscript for injection.

    The script runs inside a function whose `GM_info` parameter shadows the page-level
    default, so every script sees its own metadata.

    Args:
        record: Catalog record.

    Returns:
        JavaScript source ready for evaluation or init-script registration.
    """
    gm_info = json.dumps(build_gm_info(record))
    return (
        "(function (GM_info) {\n"
        f"{record.source}\n"
        f"}}).call(window, {gm_info});\n"
        f"//# sourceURL={source_url_for(record)}\n"
    )


def load_page_runtime(path: str | Path | None = None) -> str | None:
    """
    Read the page runtime that defines the GM_* APIs.

    Args:
        path: Override path (default: the bundled gm_api_polyfill.js).

    Returns:
        Its source, or None if it cannot be read (scripts then run without GM_* APIs).
    """
    runtime_path = Path(path) if path else DEFAULT_PAGE_RUNTIME_PATH
    try:
        source = runtime_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning("GM polyfill script not found at %s. GM_* functions will not be available.", runtime_path)
        return None
    except OSError as e:
        logger.error("Error reading GM polyfill script %s: %s", runtime_path, e)
        return None
    logger.info("Loaded GM polyfill from %s", runtime_path)
    return source
