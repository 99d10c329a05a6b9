"""
greasebox/config.py

Environment variable configuration.

Contains:
- Config: Centralized settings from environment variables
- LOG_LEVEL, TARGET_URL, USERSCRIPTS_DIR, GM_STORAGE_PATH, REMOTE_DEBUGGING_ADDRESS, etc.
"""

import logging
import os
from typing import Any

from dotenv import load_dotenv

load_dotenv()

# configure httpx logger to suppress verbose HTTP logs from GM_xmlhttpRequest traffic
logging.getLogger("httpx").setLevel(logging.WARNING)


class Config():
    """
    Centralized configuration for environment variables.
    """

    # logging configuration
    LOG_LEVEL: int = logging.getLevelNamesMapping().get(
        os.getenv("LOG_LEVEL", "INFO").upper(),
        logging.INFO
    )
    LOG_DATE_FORMAT: str = os.getenv("LOG_DATE_FORMAT", "%Y-%m-%d %H:%M:%S")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "[%(asctime)s] %(levelname)s:%(name)s:%(message)s")

    # run defaults
    TARGET_URL: str = os.getenv("TARGET_URL", "https://example.com")
    USERSCRIPTS_DIR: str = os.getenv("USERSCRIPTS_DIR", "./userscripts")
    GM_STORAGE_PATH: str = os.getenv("GM_STORAGE_PATH", "./gm_storage.json")
    OBSERVE_SECONDS: float = float(os.getenv("BROWSER_TIMEOUT", "60"))

    # browser connection
    REMOTE_DEBUGGING_ADDRESS: str = os.getenv("REMOTE_DEBUGGING_ADDRESS", "http://127.0.0.1:9222")
    NAVIGATION_TIMEOUT: float = float(os.getenv("GREASEBOX_NAVIGATION_TIMEOUT", "60"))
    CDP_COMMAND_TIMEOUT: float = float(os.getenv("GREASEBOX_CDP_COMMAND_TIMEOUT", "10"))

    @classmethod
    def as_dict(cls) -> dict[str, Any]:
        """
        Return a dictionary of all UPPERCASE class attributes and their values.
        Return:
            dict[str, Any]: A dictionary of all UPPERCASE class attributes and their values.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }
