# marsvista/__init__.py
"""MarsVista - rover raw-image ingestion and API quota core."""

__version__ = "1.0.0"
__title__ = "MarsVista Ingest"
__description__ = "Ingest rover raw-image feeds into a canonical, deduplicated photo store"
