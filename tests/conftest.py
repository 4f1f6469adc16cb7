import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

# Point the default database at a throwaway directory before importing
# marsvista modules (the global services bind their URL at import time).
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="marsvista_pytest_"))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_SESSION_DIR / 'default.db'}")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from marsvista.core.ingestion.completeness_service import CompletenessService  # noqa: E402
from marsvista.core.ingestion.current_sol_service import CurrentSolService  # noqa: E402
from marsvista.core.ingestion.deduplication_service import DeduplicationService  # noqa: E402
from marsvista.core.ingestion.sol_scraper import SolScraper  # noqa: E402
from marsvista.core.ops.job_tracker import JobTracker  # noqa: E402
from marsvista.core.ops.scrape_orchestrator import ScrapeOrchestrator  # noqa: E402
from marsvista.core.shared.database_service import DatabaseService  # noqa: E402


def pytest_sessionfinish(session, exitstatus):
    """Cleanup temporary test files after the test session."""
    shutil.rmtree(_SESSION_DIR, ignore_errors=True)


# =============================================================================
# Upstream payload builders
# =============================================================================


def curiosity_item(
    item_id: int,
    sol: int,
    instrument: str = "NAV_LEFT_B",
    sample_type: str = "full",
    date_taken: Optional[str] = "2024-01-05T10:00:00.000Z",
    subframe_rect: Optional[str] = "(1,1,1024,1024)",
    **extra: Any,
) -> Dict[str, Any]:
    item = {
        "id": item_id,
        "sol": sol,
        "instrument": instrument,
        "https_url": f"https://mars.nasa.gov/msl-raw-images/{item_id}.JPG",
        "date_taken": date_taken,
        "site": 106,
        "drive": "1234",
        "xyz": "(35.1,-2.5,0.4)",
        "title": f"Sol {sol}: {instrument}",
        "description": "Raw image",
        "image_credit": "NASA/JPL-Caltech",
        "camera_vector": "(0.5,0.5,0.7)",
        "camera_model_type": "CAHVOR",
        "spacecraft_clock": 759000000.5,
        "extended": {
            "sample_type": sample_type,
            "subframe_rect": subframe_rect,
            "lmst": f"Sol-{sol:05d}M10:00:00.000",
            "mast_az": "145.2",
            "mast_el": "-10.5",
            "filter_name": "CLEAR",
        },
    }
    item.update(extra)
    return item


def perseverance_item(
    image_id: str,
    sol: int,
    instrument: str = "NAVCAM_LEFT",
    sample_type: str = "Full",
    date_taken_utc: Optional[str] = "2024-01-05T10:00:00.000",
    extended: Optional[Dict[str, Any]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    item = {
        "imageid": image_id,
        "sol": sol,
        "sample_type": sample_type,
        "date_taken_utc": date_taken_utc,
        "date_taken_mars": f"Sol-{sol:05d}M10:00:00.000",
        "site": 30,
        "drive": "2310",
        "attitude": "(0.1,0.2,0.3,0.4)",
        "camera": {
            "instrument": instrument,
            "filter_name": "UNK",
            "camera_vector": "(0.1,0.2,0.9)",
            "camera_position": "(1.0,0.0,-1.9)",
            "camera_model_type": "CAHVORE",
        },
        "image_files": {
            "small": f"https://mars.nasa.gov/{image_id}_320.jpg",
            "medium": f"https://mars.nasa.gov/{image_id}_800.jpg",
            "large": f"https://mars.nasa.gov/{image_id}_1200.jpg",
            "full_res": f"https://mars.nasa.gov/{image_id}.png",
        },
        "extended": extended if extended is not None else {
            "subframeRect": "(1,1,1280,960)",
            "scaleFactor": "1",
            "dimension": "(1280,960)",
            "mastAz": "12.5",
            "mastEl": "-3.25",
            "sclk": "700000000.1",
            "xyz": "(1.0,2.0,3.0)",
        },
        "title": f"Sol {sol} image",
        "caption": "NASA's Perseverance Mars rover",
        "credit": "NASA/JPL-Caltech",
    }
    item.update(extra)
    return item


class FakeFeed:
    """
    httpx.MockTransport handler impersonating both upstream feeds.

    Responses are registered per (source, sol, page); "latest" requests
    (no sol in the query) use ``latest[source]``. A registered value may be
    an int status, a JSON dict, an exception class, or a list of those to
    be served in order on successive calls. Unregistered pages answer 404.
    """

    def __init__(self):
        self.pages: Dict[Tuple[str, int, int], Any] = {}
        self.latest: Dict[str, Any] = {}
        self.requests: List[Tuple[str, Optional[int], int]] = []

    def curiosity(self, sol: int, items: List[Dict[str, Any]], total: Optional[int] = None, page: int = 0):
        self.pages[("curiosity", sol, page)] = {"items": items, "total": len(items) if total is None else total}

    def perseverance(self, sol: int, images: List[Dict[str, Any]], total: Optional[int] = None, page: int = 0):
        self.pages[("perseverance", sol, page)] = {
            "images": images,
            "total_images": len(images) if total is None else total,
        }

    def set(self, source: str, sol: int, response: Any, page: int = 0):
        self.pages[(source, sol, page)] = response

    def calls(self, source: str, sol: Optional[int] = None) -> int:
        return sum(1 for s, so, _ in self.requests if s == source and (sol is None or so == sol))

    def _route(self, request: httpx.Request) -> Tuple[str, Optional[int], int]:
        params = request.url.params
        page = int(params.get("page", "0"))
        if params.get("category") == "mars2020":
            sol = params.get("sol")
            return "perseverance", int(sol) if sol is not None else None, page
        condition = params.get("condition_2")
        return "curiosity", int(condition.split(":")[0]) if condition else None, page

    def handler(self, request: httpx.Request) -> httpx.Response:
        source, sol, page = self._route(request)
        self.requests.append((source, sol, page))

        if sol is None:
            spec = self.latest.get(source, 404)
        else:
            spec = self.pages.get((source, sol, page), 404)
        if isinstance(spec, list):
            spec = spec.pop(0) if len(spec) > 1 else spec[0]

        if isinstance(spec, type) and issubclass(spec, Exception):
            raise spec("simulated failure", request=request)
        if isinstance(spec, int):
            return httpx.Response(spec, json={"error": f"status {spec}"})
        return httpx.Response(200, json=spec)


async def no_sleep(_seconds: float) -> None:
    return None


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database per test."""
    service = DatabaseService(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await service.init_db()
    yield service
    await service.close()


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
async def http_client(feed):
    client = httpx.AsyncClient(transport=httpx.MockTransport(feed.handler))
    yield client
    await client.aclose()


@pytest.fixture
def dedup(db):
    return DeduplicationService(db)


@pytest.fixture
def scraper(dedup, http_client):
    return SolScraper(dedup=dedup, http_client=http_client, retry_attempts=2, sleep=no_sleep)


@pytest.fixture
def tracker():
    return JobTracker()


@pytest.fixture
def orchestrator(db, scraper, tracker):
    return ScrapeOrchestrator(
        scraper=scraper,
        completeness=CompletenessService(),
        current_sols=CurrentSolService(scraper=scraper, db=db, sleep=no_sleep),
        tracker=tracker,
        db=db,
        sleep=no_sleep,
    )
