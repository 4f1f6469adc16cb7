# ============================================================================
# MarsVista - Raw Feed Field Helpers
# ============================================================================
"""
Tolerant readers for the untyped JSON documents returned by upstream feeds.

Upstream payloads are inconsistent: numbers arrive as strings, nested
objects are sometimes missing, and geometry is encoded as tuple-like strings
such as "(0,0,1648,1200)". These helpers never raise; they return None when a
value is absent or malformed so adapters can decide what is required.

Usage:
    from marsvista.core.ingestion import json_fields as jf

    width, height = jf.parse_subframe_rect("(0,0,1648,1200)")   # (1648, 1200)
    ts = jf.parse_utc_timestamp("2024-02-01T10:22:05Z")
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

_SUBFRAME_RE = re.compile(r"\((\d+),\s*(\d+),\s*(\d+),\s*(\d+)\)")
_DIMENSION_RE = re.compile(r"\((\d+),\s*(\d+)\)")

# Coarse (width, height) by sample type, used when no geometry is reported
SAMPLE_TYPE_DIMENSIONS: Dict[str, Tuple[int, int]] = {
    "thumbnail": (160, 144),
    "subframe": (1024, 1024),
    "full": (1024, 1024),
    "downsampled": (800, 600),
    "chemcam prc": (1024, 1024),
    "mixed": (1024, 1024),
}
DEFAULT_INFERRED_DIMENSIONS = (512, 512)


def get_path(data: Any, *keys: str) -> Any:
    """Walk nested dicts; return None as soon as a level is missing or not a dict."""
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def get_str(data: Any, *keys: str) -> Optional[str]:
    value = get_path(data, *keys)
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def get_int(data: Any, *keys: str) -> Optional[int]:
    value = get_path(data, *keys)
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return None
    return None


def get_float(data: Any, *keys: str) -> Optional[float]:
    value = get_path(data, *keys)
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def get_text(data: Any, *keys: str) -> Optional[str]:
    """
    Read a value that may be a string or a structured JSON value.

    Telemetry such as camera vectors arrives either as "(1.0,2.0,3.0)" or as a
    JSON array; structured values are rendered compactly so they fit a text column.
    """
    value = get_path(data, *keys)
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (list, tuple)):
        return "(" + ",".join(str(v) for v in value) + ")"
    return str(value)


def parse_subframe_rect(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """
    Parse "(x,y,w,h)" and return (w, h).

    Returns None for missing or malformed rectangles, and for rectangles with
    a non-positive width or height.
    """
    if not value or not isinstance(value, str):
        return None
    match = _SUBFRAME_RE.search(value)
    if not match:
        return None
    width, height = int(match.group(3)), int(match.group(4))
    if width <= 0 or height <= 0:
        return None
    return width, height


def parse_dimension(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse "(w,h)" and return (w, h), or None when missing or malformed."""
    if not value or not isinstance(value, str):
        return None
    match = _DIMENSION_RE.search(value)
    if not match:
        return None
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        return None
    return width, height


def infer_dimensions(sample_type: Optional[str]) -> Optional[Tuple[int, int]]:
    """
    Coarse dimensions from the sample type.

    Returns None when no sample type is known at all; unknown sample types
    get a conservative default.
    """
    if not sample_type:
        return None
    return SAMPLE_TYPE_DIMENSIONS.get(sample_type.strip().lower(), DEFAULT_INFERRED_DIMENSIONS)


def is_thumbnail(sample_type: Optional[str]) -> bool:
    return bool(sample_type) and sample_type.strip().lower() == "thumbnail"


def parse_utc_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into a naive UTC datetime.

    Values without an offset are taken to be UTC already. Returns None for
    missing or unparsable input.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
