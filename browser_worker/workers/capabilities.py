"""Capability matching and parsing of per-session capability overrides"""

import math
from collections.abc import Iterable, Mapping
from typing import Any

from ..utils.logger import get_logger

logger = get_logger(__name__)

BROWSER_NAME = "browserName"
PLATFORM = "platform"
PLATFORM_NAME = "platformName"
IDLE_TIMEOUT = "idleTimeout"
RECORD_VIDEO = "recordVideo"
TEST_NAME = "name"
TEST_GROUP = "group"

_ANY = "ANY"


def _requested_value(requested: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = requested.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _matches(declared: Mapping[str, Any], key: str, wanted: str | None) -> bool:
    if wanted is None or wanted.upper() == _ANY:
        return True
    offered = declared.get(key)
    if offered is None and key == PLATFORM:
        offered = declared.get(PLATFORM_NAME)
    if offered is None:
        return False
    return str(offered).strip().lower() == wanted.lower()


def capabilities_match(
    declared: Iterable[Mapping[str, Any]], requested: Mapping[str, Any]
) -> bool:
    """
    True when one declared capability offers the requested browser and platform.

    Both values must match exactly (case-insensitive). A requested value that is
    missing, empty or "ANY" does not constrain the match.
    """
    browser = _requested_value(requested, BROWSER_NAME)
    platform = _requested_value(requested, PLATFORM, PLATFORM_NAME)

    for capability in declared:
        if _matches(capability, BROWSER_NAME, browser) and _matches(
            capability, PLATFORM, platform
        ):
            return True
    return False


def parse_idle_timeout(requested: Mapping[str, Any], default: float) -> float:
    """
    Effective idle timeout in seconds for a session.

    Absent, non-numeric, boolean or negative values fall back to `default`.
    """
    if IDLE_TIMEOUT not in requested:
        return default

    value = requested[IDLE_TIMEOUT]
    if value is None or isinstance(value, bool):
        logger.warning(f"Invalid {IDLE_TIMEOUT} {value!r} - using default {default}s")
        return default

    try:
        seconds = float(value)
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Invalid {IDLE_TIMEOUT} {value!r} - using default {default}s")
        return default

    if not math.isfinite(seconds) or seconds < 0:
        logger.warning(f"Invalid {IDLE_TIMEOUT} {value!r} - using default {default}s")
        return default

    return int(seconds) if seconds.is_integer() else seconds


def parse_record_video(requested: Mapping[str, Any]) -> bool:
    """recordVideo defaults to True; only an explicit false disables recording"""
    value = requested.get(RECORD_VIDEO, True)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() == "false":
        return False
    return True


def parse_label(requested: Mapping[str, Any], key: str) -> str | None:
    value = requested.get(key)
    if value is None:
        return None
    return str(value)
