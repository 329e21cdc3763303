"""
Missing-persons case API client.

Read-only access to the case backend used by the map view:
- /api/cases/ - paginated case list with filters
  (name_or_location, status, gender, age_min, age_max, submission_status)

Responses are either a paginated envelope {results, count, next} or a bare
list; both are accepted.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import aiohttp

from ..errors import CaseFetchError
from ..provider.base import LatLng

logger = logging.getLogger(__name__)

# Filter keys accepted by the case list endpoint, mapped to query parameters
FILTER_PARAMS = {
    "search": "name_or_location",
    "gender": "gender",
    "status": "status",
    "submission_status": "submission_status",
    "age_min": "age_min",
    "age_max": "age_max",
}


class CaseStatus(Enum):
    MISSING = "missing"
    FOUND = "found"
    UNDER_INVESTIGATION = "under_investigation"
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "CaseStatus":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


def _parse_coordinate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


@dataclass
class Case:
    """Missing-person case as served by the case API."""
    id: Union[int, str]
    first_name: str = ""
    last_name: str = ""
    status: CaseStatus = CaseStatus.UNKNOWN
    latitude: Any = None   # raw value, may be a string or junk
    longitude: Any = None
    photo: Optional[str] = None
    last_seen_location: str = ""
    last_seen_date: Optional[date] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    days_missing: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def location(self) -> Optional[LatLng]:
        """Both coordinates present and finite, else None."""
        lat = _parse_coordinate(self.latitude)
        lng = _parse_coordinate(self.longitude)
        if lat is None or lng is None:
            return None
        return LatLng(lat, lng)

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "Case":
        if "id" not in item:
            raise ValueError("Case payload has no id")
        known = {
            "id", "first_name", "last_name", "status", "latitude", "longitude",
            "photo", "last_seen_location", "last_seen_date", "age", "gender",
            "days_missing",
        }
        return cls(
            id=item["id"],
            first_name=item.get("first_name") or "",
            last_name=item.get("last_name") or "",
            status=CaseStatus.from_value(item.get("status")),
            latitude=item.get("latitude"),
            longitude=item.get("longitude"),
            photo=item.get("photo") or None,
            last_seen_location=item.get("last_seen_location") or "",
            last_seen_date=_parse_date(item.get("last_seen_date")),
            age=item.get("age"),
            gender=item.get("gender"),
            days_missing=item.get("days_missing"),
            extra={k: v for k, v in item.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        location = self.location
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "status": self.status.value,
            "latitude": location.lat if location else None,
            "longitude": location.lng if location else None,
            "photo": self.photo,
            "last_seen_location": self.last_seen_location,
            "last_seen_date": self.last_seen_date.isoformat() if self.last_seen_date else None,
            "age": self.age,
            "gender": self.gender,
            "days_missing": self.days_missing,
        }


@dataclass
class CasePage:
    results: List[Case]
    count: int
    next: Optional[str] = None


@dataclass
class CasesClientConfig:
    """Case API connection settings."""
    base_url: str = "http://localhost:8000"
    token: str = ""
    timeout_sec: float = 15.0
    max_pages: int = 20

    @classmethod
    def from_dict(cls, data: Dict) -> "CasesClientConfig":
        return cls(
            base_url=data.get("base_url", "http://localhost:8000"),
            token=data.get("token", ""),
            timeout_sec=data.get("timeout_sec", 15.0),
            max_pages=data.get("max_pages", 20),
        )


class CasesClient:
    """
    Client for the case backend.

    Usage:
        client = CasesClient(CasesClientConfig(base_url="http://localhost:8000"))

        # Full filtered list for the map
        cases = await client.fetch_all_cases({"status": "missing"})

        # Remote search fallback
        matches = await client.search_cases("nouakchott")
    """

    def __init__(self, config: Optional[CasesClientConfig] = None):
        self.config = config or CasesClientConfig()
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self.config.token:
                headers["Authorization"] = f"Bearer {self.config.token}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_sec),
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def build_params(self, filters: Optional[Dict[str, Any]], page: int = 1) -> Dict[str, str]:
        params = {"page": str(page)}
        for key, param in FILTER_PARAMS.items():
            value = (filters or {}).get(key)
            if value not in (None, ""):
                params[param] = str(value)
        return params

    async def _request(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as resp:
                if resp.status == 401:
                    raise CaseFetchError("Case API rejected credentials (HTTP 401)")
                if resp.status == 204 or (resp.status == 200 and resp.content_length == 0):
                    return None
                if resp.status != 200:
                    text = await resp.text()
                    raise CaseFetchError(f"Case API error: HTTP {resp.status}: {text[:200]}")
                return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error(f"Case API request failed: {e}")
            raise CaseFetchError(f"Case API request failed: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Case API request timed out after {self.config.timeout_sec}s: {url}")
            raise CaseFetchError(f"Case API request timed out after {self.config.timeout_sec}s") from e
        except ValueError as e:
            logger.error(f"Case API returned invalid JSON: {e}")
            raise CaseFetchError(f"Case API returned invalid JSON: {e}") from e

    def _parse_page(self, data: Any) -> CasePage:
        if data is None:
            return CasePage(results=[], count=0)
        if isinstance(data, list):
            items, count, next_url = data, len(data), None
        elif not isinstance(data, dict):
            raise CaseFetchError(f"Unexpected case list payload: {type(data).__name__}")
        else:
            items = data.get("results") or []
            count = data.get("count", len(items))
            next_url = data.get("next")

        cases = []
        for item in items:
            try:
                cases.append(Case.from_dict(item))
            except Exception as e:
                logger.warning(f"Failed to parse case: {e}")
        return CasePage(results=cases, count=count, next=next_url)

    async def fetch_cases(self, filters: Optional[Dict[str, Any]] = None, page: int = 1) -> CasePage:
        """Fetch one page of cases."""
        url = f"{self.config.base_url.rstrip('/')}/api/cases/"
        data = await self._request(url, self.build_params(filters, page))
        result = self._parse_page(data)
        logger.debug(f"Got {len(result.results)} cases (page {page}, count {result.count})")
        return result

    async def fetch_all_cases(self, filters: Optional[Dict[str, Any]] = None) -> CasePage:
        """Fetch every page of the filtered case list."""
        first = await self.fetch_cases(filters, page=1)
        cases = list(first.results)
        next_url = first.next
        pages = 1

        while next_url and pages < self.config.max_pages:
            page = self._parse_page(await self._request(next_url))
            cases.extend(page.results)
            next_url = page.next
            pages += 1

        if next_url:
            logger.warning(f"Stopped after {pages} pages; {first.count - len(cases)} cases not loaded")

        return CasePage(results=cases, count=first.count, next=None)

    async def search_cases(self, query: str) -> List[Case]:
        """Remote name-or-location search."""
        page = await self.fetch_cases({"search": query})
        return page.results
