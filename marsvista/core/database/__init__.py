# marsvista/core/database/__init__.py
"""
Database package for MarsVista.

Provides the SQLAlchemy declarative base and models.
"""

from .base import Base
from .models import (
    Photo,
    ScrapeJobRun,
    ScrapeJobSourceDetail,
    SolCompleteness,
)

__all__ = [
    "Base",
    "Photo",
    "ScrapeJobRun",
    "ScrapeJobSourceDetail",
    "SolCompleteness",
]
