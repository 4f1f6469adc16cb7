# marsvista/core/ingestion/camera_mapping.py
"""
Instrument name -> canonical camera id lookup.

Upstream feeds report instrument names at a finer grain than the camera
catalogue (e.g. Curiosity's "MAST_LEFT", "NAV_RIGHT_B"). Each source has an
exact-name table and an ordered prefix table. Names that match neither pass
through unchanged and are logged once per process, never rejected.
"""

import logging
from typing import Dict, List, Set, Tuple

logger = logging.getLogger("marsvista.ingestion.cameras")

CURIOSITY_EXACT: Dict[str, str] = {
    "MASTCAM": "MAST",
    "MAST": "MAST",
    "NAVCAM": "NAVCAM",
    "FHAZ": "FHAZ",
    "RHAZ": "RHAZ",
    "CHEMCAM": "CHEMCAM",
    "MAHLI": "MAHLI",
    "MARDI": "MARDI",
}

CURIOSITY_PREFIXES: List[Tuple[str, str]] = [
    ("MAST_", "MAST"),
    ("NAV_", "NAVCAM"),
    ("FHAZ_", "FHAZ"),
    ("RHAZ_", "RHAZ"),
    ("CHEMCAM_", "CHEMCAM"),
]

# Perseverance instrument names are already catalogue camera ids
PERSEVERANCE_CAMERAS: Set[str] = {
    "EDL_RUCAM", "EDL_RDCAM", "EDL_DDCAM", "EDL_PUCAM1", "EDL_PUCAM2",
    "NAVCAM_LEFT", "NAVCAM_RIGHT", "MCZ_RIGHT", "MCZ_LEFT",
    "FRONT_HAZCAM_LEFT_A", "FRONT_HAZCAM_RIGHT_A", "FRONT_HAZCAM_LEFT_B", "FRONT_HAZCAM_RIGHT_B",
    "REAR_HAZCAM_LEFT", "REAR_HAZCAM_RIGHT",
    "SKYCAM", "SHERLOC_WATSON", "SUPERCAM_RMI", "LCAM",
}

CAMERA_TABLES: Dict[str, Tuple[Dict[str, str], List[Tuple[str, str]]]] = {
    "curiosity": (CURIOSITY_EXACT, CURIOSITY_PREFIXES),
    "perseverance": ({name: name for name in PERSEVERANCE_CAMERAS}, []),
}

_reported_unmapped: Set[Tuple[str, str]] = set()


def normalize_camera(source: str, instrument: str) -> str:
    """
    Map an upstream instrument name to a canonical camera id.

    Args:
        source: Source key (curiosity, perseverance)
        instrument: Instrument name as reported upstream

    Returns:
        Canonical camera id, or the stripped input unchanged when unmapped
    """
    name = instrument.strip()
    key = name.upper()
    exact, prefixes = CAMERA_TABLES.get(source, ({}, []))

    if key in exact:
        return exact[key]
    for prefix, camera in prefixes:
        if key.startswith(prefix):
            return camera

    if (source, name) not in _reported_unmapped:
        _reported_unmapped.add((source, name))
        logger.info(f"Unmapped {source} instrument '{name}', keeping name as camera id")
    return name
