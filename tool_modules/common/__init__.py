"""Common utilities for tool modules.

This module provides shared infrastructure for the tool modules:
the project root and config.json lookup.

Usage in tool modules:
    from tool_modules.common import PROJECT_ROOT, get_config_section

    section = get_config_section("meet_recorder")
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# This file is at: tool_modules/common/__init__.py
# Project root is 2 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

PROJECT_ROOT_STR = str(PROJECT_ROOT)


def setup_path() -> None:
    """Add project root to sys.path if not already present.

    Lets `python tool_modules/...` style invocations import the
    `services` and `tool_modules` packages.
    """
    if PROJECT_ROOT_STR not in sys.path:
        sys.path.insert(0, PROJECT_ROOT_STR)


setup_path()


def config_paths() -> list[Path]:
    """Standard config.json locations, in order of preference."""
    return [
        Path.cwd() / "config.json",
        PROJECT_ROOT / "config.json",
    ]


def load_config(paths: Optional[list[Path]] = None) -> dict[str, Any]:
    """
    Load config.json from the standard locations.

    Searches in order:
    1. Current working directory
    2. Project root

    Returns:
        Config dict, or empty dict if not found or unreadable
    """
    for config_path in paths if paths is not None else config_paths():
        if not config_path.exists():
            continue
        try:
            with open(config_path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable config file {config_path}: {e}")
            continue
        if isinstance(data, dict):
            return data
        logger.warning(f"Ignoring config file {config_path}: top level is not an object")
    return {}


def get_config_section(section: str, paths: Optional[list[Path]] = None) -> dict[str, Any]:
    """
    Get a specific top-level section from config.json.

    Args:
        section: Top-level key in config (e.g. 'meet_recorder')
        paths: Optional explicit list of candidate files

    Returns:
        Section dict, or empty dict if absent
    """
    value = load_config(paths).get(section, {})
    return value if isinstance(value, dict) else {}
