"""
DosiFlow: Drug Label Lookup
===========================
Optional label information (pregnancy, pediatric use, warnings...) from the
OpenFDA drug label API.

- Results are cached per drug for 24 h.
- Requests are throttled to one per 500 ms.
- On network failure a stale cache entry is served; without one the
  result carries an error. Nothing here ever raises to the caller, and
  no dose, interaction or adjuvant result depends on it.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional, Tuple

import requests

from constants import LABEL_LOOKUP_CONSTANTS
from catalog import Catalog

logger = logging.getLogger(__name__)

NOT_FOUND_NOTE = "No data found in OpenFDA."


@dataclass(frozen=True)
class LabelInfo:
    generic_name: Optional[str] = None
    brand_name: Optional[str] = None
    pregnancy: Optional[str] = None
    nursing: Optional[str] = None
    pediatric_use: Optional[str] = None
    geriatric_use: Optional[str] = None
    warnings: Optional[str] = None
    boxed_warning: Optional[str] = None
    contraindications: Optional[str] = None
    note: Optional[str] = None
    unavailable: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LabelLookupResult:
    data: Optional[LabelInfo]
    error: Optional[str] = None
    from_cache: bool = False


def _first(value):
    if isinstance(value, list):
        return value[0] if value else None
    return value


def extract_label_info(result: dict, generic_name: str, brand_name: Optional[str]) -> LabelInfo:
    """Keeps the label sections a bedside reader needs; each is the first paragraph only."""
    pregnancy = _first(result.get("pregnancy")) or _first(result.get("pregnancy_or_breast_feeding"))
    return LabelInfo(
        generic_name=generic_name,
        brand_name=brand_name or generic_name,
        pregnancy=pregnancy,
        nursing=_first(result.get("nursing_mothers")),
        pediatric_use=_first(result.get("pediatric_use")),
        geriatric_use=_first(result.get("geriatric_use")),
        warnings=_first(result.get("warnings")),
        boxed_warning=_first(result.get("boxed_warning")),
        contraindications=_first(result.get("contraindications")),
    )


class OpenFDALabelClient:
    """Thin HTTP client. Raises requests exceptions; the cache layer handles them."""

    def __init__(self, base_url: str = LABEL_LOOKUP_CONSTANTS.BASE_URL,
                 timeout: float = LABEL_LOOKUP_CONSTANTS.TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def search_generic_name(self, generic_name: str) -> Optional[dict]:
        """First label whose generic name matches exactly, or None when OpenFDA has none."""
        params = {"search": f'openfda.generic_name:"{generic_name}"', "limit": 1}
        response = self.session.get(self.base_url, params=params, timeout=self.timeout,
                                    headers={"Accept": "application/json"})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Unexpected OpenFDA payload: {type(payload).__name__}")
        results = payload.get("results") or []
        return results[0] if results else None


class CachedLabelLookup:
    """
    `fetch_label_info(drug_id)` with a TTL cache, a request throttle and an
    offline fallback. Clock and sleep are injectable for tests.
    """

    def __init__(self, catalog: Catalog, client: Optional[OpenFDALabelClient] = None,
                 ttl_seconds: float = LABEL_LOOKUP_CONSTANTS.CACHE_TTL_SECONDS,
                 min_interval_seconds: float = LABEL_LOOKUP_CONSTANTS.MIN_INTERVAL_SECONDS,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        self.catalog = catalog
        self.client = client or OpenFDALabelClient()
        self.ttl_seconds = ttl_seconds
        self.min_interval_seconds = min_interval_seconds
        self.clock = clock
        self.sleep = sleep
        # Expired entries are kept: they are the offline fallback
        self._cache: Dict[str, Tuple[float, LabelInfo]] = {}
        self._last_request = None
        self._lock = threading.Lock()

    def _fresh(self, drug_id: str) -> Optional[LabelInfo]:
        entry = self._cache.get(drug_id)
        if entry is None:
            return None
        stored_at, info = entry
        if self.clock() - stored_at > self.ttl_seconds:
            return None
        return info

    def _store(self, drug_id: str, info: LabelInfo) -> LabelInfo:
        self._cache[drug_id] = (self.clock(), info)
        return info

    def _throttle(self) -> None:
        with self._lock:
            if self._last_request is not None:
                elapsed = self.clock() - self._last_request
                if elapsed < self.min_interval_seconds:
                    self.sleep(self.min_interval_seconds - elapsed)
            self._last_request = self.clock()

    def clear(self) -> None:
        self._cache.clear()

    def fetch_label_info(self, drug_id: str) -> LabelLookupResult:
        cached = self._fresh(drug_id)
        if cached is not None:
            return LabelLookupResult(data=cached, from_cache=True)

        drug = self.catalog.drug(drug_id)
        if drug is None or not drug.label_generic_name:
            return LabelLookupResult(data=None, error="Drug not mapped for label lookup")

        if not drug.label_approved:
            info = LabelInfo(generic_name=drug.label_generic_name, note=drug.label_note, unavailable=True)
            return LabelLookupResult(data=self._store(drug_id, info))

        brand = drug.label_brand_names[0] if drug.label_brand_names else None
        try:
            self._throttle()
            result = self.client.search_generic_name(drug.label_generic_name)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Label lookup failed for {drug_id}: {e}")
            stale = self._cache.get(drug_id)
            if stale is not None:
                return LabelLookupResult(data=stale[1], error="Cached data (offline)", from_cache=True)
            return LabelLookupResult(data=None, error=f"Connection error: {e}")

        if result is None:
            info = LabelInfo(generic_name=drug.label_generic_name, note=NOT_FOUND_NOTE, unavailable=True)
        else:
            info = extract_label_info(result, drug.label_generic_name, brand)
        return LabelLookupResult(data=self._store(drug_id, info))
