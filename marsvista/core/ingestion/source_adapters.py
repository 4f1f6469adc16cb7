# ============================================================================
# MarsVista - Source Adapters
# ============================================================================
"""
Per-source adapters that turn one upstream feed's JSON into canonical photos.

Each upstream family (Curiosity's raw_image_items API, Perseverance's RSS
JSON feed) has its own payload shape, pagination rule and "empty sol"
signal. An adapter owns all of that; nothing past ``parse()`` ever sees the
raw shape again.

Adapters are a closed set registered by source key:

    from marsvista.core.ingestion.source_adapters import get_source_adapter

    adapter = get_source_adapter("perseverance")
    url, params = adapter.build_page_request(sol=1000, page=0)
    for raw in adapter.extract_items(payload):
        result = adapter.parse(raw, sol=1000)
        if isinstance(result, ParseError):
            ...  # counted as skipped
        elif result.skip:
            ...  # thumbnail, not stored
        else:
            rows.append(result.to_row())

``parse()`` is a pure transform: errors are returned as ``ParseError``
values, never raised.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from marsvista.config import settings
from marsvista.core.ingestion import json_fields as jf
from marsvista.core.ingestion.camera_mapping import normalize_camera


class UnknownSourceError(KeyError):
    """Raised when a source key has no registered adapter."""


@dataclass
class CanonicalPhoto:
    """Source-independent photo record; maps 1:1 onto the ``photos`` table."""

    source_id: str
    source: str
    sol: int
    camera: str
    date_taken_utc: datetime
    date_taken_mars: Optional[str] = None
    img_src_small: Optional[str] = None
    img_src_medium: Optional[str] = None
    img_src_large: Optional[str] = None
    img_src_full: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    sample_type: Optional[str] = None
    filter_name: Optional[str] = None
    site: Optional[int] = None
    drive: Optional[int] = None
    xyz: Optional[str] = None
    mast_az: Optional[float] = None
    mast_el: Optional[float] = None
    camera_vector: Optional[str] = None
    camera_position: Optional[str] = None
    camera_model_type: Optional[str] = None
    attitude: Optional[str] = None
    spacecraft_clock: Optional[float] = None
    title: Optional[str] = None
    caption: Optional[str] = None
    credit: Optional[str] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)
    # Low-value variant (thumbnail); reported but never stored
    skip: bool = False

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row.pop("skip")
        return row


@dataclass
class ParseError:
    """An upstream item that could not be converted; counted as skipped."""

    source: str
    reason: str
    source_id: Optional[str] = None

    def __str__(self) -> str:
        ident = self.source_id or "<no id>"
        return f"{self.source} item {ident}: {self.reason}"


ParseResult = Union[CanonicalPhoto, ParseError]


class SourceAdapter(ABC):
    """
    Capability interface shared by every source family.

    Attributes:
        name: Registry key for the source
        base_url: Feed endpoint
        per_page: Page size requested from upstream
        not_found_means_empty: Whether a 404 on page 0 marks the sol as empty
    """

    name: str = ""
    not_found_means_empty: bool = True

    def __init__(self, base_url: str, per_page: int):
        self.base_url = base_url
        self.per_page = per_page

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    @abstractmethod
    def build_page_request(self, sol: int, page: int) -> Tuple[str, Dict[str, Any]]:
        """Return (url, query params) for one page of one sol."""

    @abstractmethod
    def extract_items(self, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return the raw item list from a page payload."""

    @abstractmethod
    def extract_total(self, payload: Dict[str, Any]) -> Optional[int]:
        """Return the upstream total item count for the sol, if reported."""

    @abstractmethod
    def has_more(self, page: int, items: List[Dict[str, Any]], total: Optional[int]) -> bool:
        """Whether another page should be fetched after ``page``."""

    # ------------------------------------------------------------------
    # Current sol discovery
    # ------------------------------------------------------------------

    @abstractmethod
    def build_latest_request(self) -> Tuple[str, Dict[str, Any]]:
        """Return (url, params) for the single newest item in the feed."""

    def extract_latest_sol(self, payload: Dict[str, Any]) -> Optional[int]:
        items = self.extract_items(payload)
        if not items:
            return None
        return jf.get_int(items[0], "sol")

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @abstractmethod
    def parse(self, raw_item: Dict[str, Any], sol: Optional[int] = None) -> ParseResult:
        """
        Convert one raw item into a CanonicalPhoto or a ParseError.

        Args:
            raw_item: Untyped upstream item
            sol: Sol the item was requested for; used when the item omits it
        """

    def _error(self, reason: str, raw_item: Any, id_key: str) -> ParseError:
        return ParseError(source=self.name, reason=reason, source_id=jf.get_str(raw_item, id_key))


class CuriositySourceAdapter(SourceAdapter):
    """
    Curiosity (MSL) raw_image_items API.

    Payload: ``{"items": [...], "total": N}``. Pages are zero-based; fetching
    continues while ``(page + 1) * per_page < total``; without a ``total`` it
    continues until an empty page or a 404. A 404 on page 0 means the sol has
    no images.
    """

    name = "curiosity"

    def __init__(self, base_url: Optional[str] = None, per_page: Optional[int] = None):
        super().__init__(
            base_url or settings.curiosity_api_url,
            per_page or settings.curiosity_per_page,
        )

    def build_page_request(self, sol: int, page: int) -> Tuple[str, Dict[str, Any]]:
        return self.base_url, {
            "order": "sol desc",
            "per_page": self.per_page,
            "page": page,
            "condition_1": "msl:mission",
            "condition_2": f"{sol}:sol:in",
        }

    def build_latest_request(self) -> Tuple[str, Dict[str, Any]]:
        return self.base_url, {
            "order": "sol desc",
            "per_page": 1,
            "page": 0,
            "condition_1": "msl:mission",
        }

    def extract_items(self, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        items = payload.get("items") if isinstance(payload, dict) else None
        return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []

    def extract_total(self, payload: Dict[str, Any]) -> Optional[int]:
        return jf.get_int(payload, "total")

    def has_more(self, page: int, items: List[Dict[str, Any]], total: Optional[int]) -> bool:
        if not items:
            return False
        if total is None:
            return True
        return (page + 1) * self.per_page < total

    def parse(self, raw_item: Dict[str, Any], sol: Optional[int] = None) -> ParseResult:
        if not isinstance(raw_item, dict):
            return ParseError(source=self.name, reason="item is not an object")

        source_id = jf.get_str(raw_item, "id")
        if source_id is None:
            return self._error("missing id", raw_item, "id")

        item_sol = jf.get_int(raw_item, "sol")
        if item_sol is None:
            item_sol = sol
        if item_sol is None:
            return self._error("missing sol", raw_item, "id")

        instrument = jf.get_str(raw_item, "instrument")
        if instrument is None:
            return self._error("missing instrument", raw_item, "id")

        date_taken = jf.parse_utc_timestamp(jf.get_str(raw_item, "date_taken"))
        if date_taken is None:
            return self._error("missing or unparsable date_taken", raw_item, "id")

        sample_type = jf.get_str(raw_item, "extended", "sample_type")
        dimensions = (
            jf.parse_subframe_rect(jf.get_str(raw_item, "extended", "subframe_rect"))
            or jf.infer_dimensions(sample_type)
        )
        width, height = dimensions if dimensions else (None, None)

        return CanonicalPhoto(
            source_id=source_id,
            source=self.name,
            sol=item_sol,
            camera=normalize_camera(self.name, instrument),
            date_taken_utc=date_taken,
            date_taken_mars=jf.get_str(raw_item, "extended", "lmst"),
            img_src_small=jf.get_str(raw_item, "extended", "url_list"),
            img_src_full=jf.get_str(raw_item, "https_url"),
            width=width,
            height=height,
            sample_type=sample_type,
            filter_name=jf.get_str(raw_item, "extended", "filter_name"),
            site=jf.get_int(raw_item, "site"),
            drive=jf.get_int(raw_item, "drive"),
            xyz=jf.get_text(raw_item, "xyz"),
            mast_az=jf.get_float(raw_item, "extended", "mast_az"),
            mast_el=jf.get_float(raw_item, "extended", "mast_el"),
            camera_vector=jf.get_text(raw_item, "camera_vector"),
            camera_position=jf.get_text(raw_item, "camera_position"),
            camera_model_type=jf.get_str(raw_item, "camera_model_type"),
            attitude=jf.get_text(raw_item, "attitude"),
            spacecraft_clock=jf.get_float(raw_item, "spacecraft_clock"),
            title=jf.get_str(raw_item, "title"),
            caption=jf.get_str(raw_item, "description"),
            credit=jf.get_str(raw_item, "image_credit"),
            raw_data=raw_item,
            skip=jf.is_thumbnail(sample_type),
        )


class PerseveranceSourceAdapter(SourceAdapter):
    """
    Perseverance (Mars 2020) RSS JSON feed.

    Payload: ``{"images": [...], "total_images": N}``. ``total_images`` counts
    thumbnails and full frames together, so it is only an upper bound for
    what gets stored. Pagination continues while a page comes back full. A
    404 means the sol has no images.

    Dimensions come from ``extended.subframeRect`` ``(x,y,w,h)``, then
    ``extended.dimension`` ``(w,h)``, then the sample type.
    ``extended.scaleFactor`` is a downsampling ratio and is never read as a
    dimension.
    """

    name = "perseverance"

    def __init__(self, base_url: Optional[str] = None, per_page: Optional[int] = None):
        super().__init__(
            base_url or settings.perseverance_api_url,
            per_page or settings.perseverance_per_page,
        )

    def build_page_request(self, sol: int, page: int) -> Tuple[str, Dict[str, Any]]:
        return self.base_url, {
            "feed": "raw_images",
            "category": "mars2020",
            "feedtype": "json",
            "sol": sol,
            "num": self.per_page,
            "page": page,
        }

    def build_latest_request(self) -> Tuple[str, Dict[str, Any]]:
        return self.base_url, {
            "feed": "raw_images",
            "category": "mars2020",
            "feedtype": "json",
            "num": 1,
            "page": 0,
            "order": "sol desc",
        }

    def extract_items(self, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        images = payload.get("images") if isinstance(payload, dict) else None
        return [img for img in images if isinstance(img, dict)] if isinstance(images, list) else []

    def extract_total(self, payload: Dict[str, Any]) -> Optional[int]:
        return jf.get_int(payload, "total_images")

    def has_more(self, page: int, items: List[Dict[str, Any]], total: Optional[int]) -> bool:
        return len(items) >= self.per_page

    def resolve_dimensions(self, raw_item: Dict[str, Any], sample_type: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
        dimensions = (
            jf.parse_subframe_rect(jf.get_str(raw_item, "extended", "subframeRect"))
            or jf.parse_dimension(jf.get_str(raw_item, "extended", "dimension"))
            or jf.infer_dimensions(sample_type)
        )
        return dimensions if dimensions else (None, None)

    def parse(self, raw_item: Dict[str, Any], sol: Optional[int] = None) -> ParseResult:
        if not isinstance(raw_item, dict):
            return ParseError(source=self.name, reason="item is not an object")

        source_id = jf.get_str(raw_item, "imageid")
        if source_id is None:
            return self._error("missing imageid", raw_item, "imageid")

        item_sol = jf.get_int(raw_item, "sol")
        if item_sol is None:
            item_sol = sol
        if item_sol is None:
            return self._error("missing sol", raw_item, "imageid")

        instrument = jf.get_str(raw_item, "camera", "instrument")
        if instrument is None:
            return self._error("missing camera.instrument", raw_item, "imageid")

        date_taken = jf.parse_utc_timestamp(
            jf.get_str(raw_item, "date_taken_utc") or jf.get_str(raw_item, "date_taken")
        )
        if date_taken is None:
            return self._error("missing or unparsable date_taken_utc", raw_item, "imageid")

        sample_type = jf.get_str(raw_item, "sample_type")
        width, height = self.resolve_dimensions(raw_item, sample_type)

        return CanonicalPhoto(
            source_id=source_id,
            source=self.name,
            sol=item_sol,
            camera=normalize_camera(self.name, instrument),
            date_taken_utc=date_taken,
            date_taken_mars=jf.get_str(raw_item, "date_taken_mars"),
            img_src_small=jf.get_str(raw_item, "image_files", "small"),
            img_src_medium=jf.get_str(raw_item, "image_files", "medium"),
            img_src_large=jf.get_str(raw_item, "image_files", "large"),
            img_src_full=jf.get_str(raw_item, "image_files", "full_res"),
            width=width,
            height=height,
            sample_type=sample_type,
            filter_name=jf.get_str(raw_item, "camera", "filter_name"),
            site=jf.get_int(raw_item, "site"),
            drive=jf.get_int(raw_item, "drive"),
            xyz=jf.get_text(raw_item, "extended", "xyz"),
            mast_az=jf.get_float(raw_item, "extended", "mastAz"),
            mast_el=jf.get_float(raw_item, "extended", "mastEl"),
            camera_vector=jf.get_text(raw_item, "camera", "camera_vector"),
            camera_position=jf.get_text(raw_item, "camera", "camera_position"),
            camera_model_type=jf.get_str(raw_item, "camera", "camera_model_type"),
            attitude=jf.get_text(raw_item, "attitude"),
            spacecraft_clock=jf.get_float(raw_item, "extended", "sclk"),
            title=jf.get_str(raw_item, "title"),
            caption=jf.get_str(raw_item, "caption"),
            credit=jf.get_str(raw_item, "credit"),
            raw_data=raw_item,
            skip=jf.is_thumbnail(sample_type),
        )


# Explicit registry: source key -> adapter class
SOURCE_ADAPTERS: Dict[str, type] = {
    CuriositySourceAdapter.name: CuriositySourceAdapter,
    PerseveranceSourceAdapter.name: PerseveranceSourceAdapter,
}


def get_source_adapter(source: str) -> SourceAdapter:
    """
    Build the adapter registered for ``source``.

    Raises:
        UnknownSourceError: If no adapter is registered under that key
    """
    key = (source or "").strip().lower()
    try:
        adapter_cls = SOURCE_ADAPTERS[key]
    except KeyError:
        raise UnknownSourceError(
            f"Unknown source '{source}'. Registered: {', '.join(sorted(SOURCE_ADAPTERS))}"
        ) from None
    return adapter_cls()


def registered_sources() -> List[str]:
    return sorted(SOURCE_ADAPTERS)
