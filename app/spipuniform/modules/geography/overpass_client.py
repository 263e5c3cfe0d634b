from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://overpass-api.de/api/interpreter"
USER_AGENT = "SpipUniform/1.0"

MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 10.0
MIN_REQUEST_INTERVAL = 0.5

PLACE_FILTERS = (
    '["place"~"^(city|town|village|hamlet|locality|suburb)$"]',
    '["natural"~"^(bay|beach)$"]',
    '["tourism"~"^(attraction|resort)$"]',
)

# (min_lat, max_lat, min_lon, max_lon)
IRISH_COUNTY_BOUNDS: dict[str, tuple[float, float, float, float]] = {
    "wicklow": (52.8, 53.3, -6.8, -5.9),
    "dublin": (53.2, 53.6, -6.6, -6.0),
    "cork": (51.3, 52.3, -10.0, -7.8),
    "galway": (53.0, 53.8, -10.2, -8.4),
    "kerry": (51.6, 52.4, -10.5, -9.3),
    "mayo": (53.5, 54.3, -10.3, -8.7),
    "donegal": (54.6, 55.4, -8.6, -7.3),
    "limerick": (52.3, 52.8, -9.0, -8.2),
    "tipperary": (52.3, 53.0, -8.3, -7.3),
    "waterford": (52.0, 52.4, -8.0, -7.0),
    "kilkenny": (52.2, 52.8, -7.7, -6.9),
    "wexford": (52.1, 52.7, -7.0, -6.1),
    "carlow": (52.6, 52.9, -7.0, -6.7),
    "laois": (52.8, 53.3, -7.9, -7.1),
    "kildare": (53.1, 53.5, -7.3, -6.5),
    "meath": (53.3, 53.8, -7.3, -6.4),
    "louth": (53.7, 54.1, -6.8, -6.1),
    "westmeath": (53.3, 53.7, -7.9, -7.1),
    "offaly": (53.0, 53.5, -8.0, -7.1),
    "longford": (53.6, 53.9, -8.0, -7.5),
    "roscommon": (53.6, 54.1, -8.8, -7.9),
    "sligo": (54.1, 54.5, -8.9, -8.2),
    "leitrim": (54.0, 54.5, -8.3, -7.8),
    "cavan": (53.9, 54.4, -7.9, -6.8),
    "monaghan": (54.0, 54.4, -7.5, -6.8),
    "clare": (52.6, 53.2, -9.9, -8.4),
}


class OverpassError(RuntimeError):
    pass


class OverpassRateLimited(OverpassError):
    pass


@dataclass(frozen=True)
class Place:
    osm_id: int
    name: str
    place_type: str
    lat: float
    lon: float


def retry_delay(attempt: int) -> float:
    """Backoff for the given 1-based attempt: 1s, 2s, 4s... capped at 10s."""
    return min(INITIAL_RETRY_DELAY * (2 ** (attempt - 1)), MAX_RETRY_DELAY)


def _normalize_county(name: str) -> str:
    name = (name or "").strip()
    if name.lower().startswith("county "):
        name = name[7:]
    return name[:1].upper() + name[1:]


def dedupe_places(places: list[Place]) -> list[Place]:
    seen: set[str] = set()
    out: list[Place] = []
    for p in places:
        key = p.name.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out


def parse_elements(data: dict[str, Any]) -> list[Place]:
    out: list[Place] = []
    for el in data.get("elements") or []:
        tags = el.get("tags") or {}
        name = (tags.get("name") or "").strip()
        center = el.get("center") or {}
        lat = el.get("lat", center.get("lat"))
        lon = el.get("lon", center.get("lon"))
        if not name or lat is None or lon is None:
            continue
        out.append(
            Place(
                osm_id=int(el.get("id") or 0),
                name=name,
                place_type=tags.get("place") or tags.get("natural") or tags.get("tourism") or "locality",
                lat=float(lat),
                lon=float(lon),
            )
        )
    return out


class _TTLCache:
    def __init__(self, max_entries: int = 256) -> None:
        self._data: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.max_entries = max_entries

    def __len__(self) -> int:
        return len(self._data)

    def _prune(self) -> None:
        now = time.monotonic()
        for key in [k for k, (expires, _v) in self._data.items() if expires <= now]:
            del self._data[key]
        # Still full: drop whatever expires soonest.
        overflow = len(self._data) - self.max_entries + 1
        if overflow > 0:
            for key in sorted(self._data, key=lambda k: self._data[k][0])[:overflow]:
                del self._data[key]

    def get(self, key: str) -> Any:
        with self._lock:
            hit = self._data.get(key)
            if hit is None:
                return None
            expires, value = hit
            if expires <= time.monotonic():
                self._data.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            if key not in self._data and len(self._data) >= self.max_entries:
                self._prune()
            self._data[key] = (time.monotonic() + ttl_seconds, value)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


_cache = _TTLCache()
_rate_lock = threading.Lock()
_last_request_at = 0.0


def clear_cache() -> None:
    _cache.clear()


@dataclass
class OverpassClient:
    endpoint: str = DEFAULT_ENDPOINT
    timeout_seconds: int = 25
    sleep: Any = field(default=time.sleep, repr=False)

    def _enforce_rate_limit(self) -> None:
        global _last_request_at
        with _rate_lock:
            wait = MIN_REQUEST_INTERVAL - (time.monotonic() - _last_request_at)
            if wait > 0:
                self.sleep(wait)
            _last_request_at = time.monotonic()

    def _post(self, query: str) -> dict[str, Any]:
        body = urllib.parse.urlencode({"data": query}).encode("utf-8")
        req = urllib.request.Request(self.endpoint, data=body, method="POST")
        req.add_header("Content-Type", "application/x-www-form-urlencoded")
        req.add_header("User-Agent", USER_AGENT)
        req.add_header("Accept", "application/json")
        with urllib.request.urlopen(req, timeout=self.timeout_seconds + 5) as resp:
            raw = resp.read()
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise OverpassError("Invalid JSON from Overpass") from e

    def run_query(self, query: str) -> list[Place]:
        """POST a QL query; retries only on HTTP 429."""
        for attempt in range(1, MAX_RETRIES + 1):
            self._enforce_rate_limit()
            try:
                return parse_elements(self._post(query))
            except urllib.error.HTTPError as e:
                if e.code != 429:
                    raise OverpassError(f"Overpass API error: {e.code}") from e
                if attempt == MAX_RETRIES:
                    raise OverpassRateLimited(
                        f"Overpass API error: 429 - Rate limited after {MAX_RETRIES} attempts. Please try again later."
                    ) from e
                delay = retry_delay(attempt)
                logger.warning("Overpass rate limited (429), retrying in %.1fs (attempt %s/%s)", delay, attempt, MAX_RETRIES)
                self.sleep(delay)
            except urllib.error.URLError as e:
                raise OverpassError(f"Overpass request failed: {e.reason}") from e
            except OSError as e:
                # Read timeouts and dropped connections after urlopen() returned.
                raise OverpassError(f"Overpass request failed: {e}") from e
        raise OverpassError("Overpass request failed")

    def county_bounds(self, county_name: str) -> tuple[float, float, float, float] | None:
        key = f"county_bounds_{county_name.strip().lower()}"
        cached = _cache.get(key)
        if cached:
            return cached
        bounds = IRISH_COUNTY_BOUNDS.get(_normalize_county(county_name).lower())
        if bounds:
            _cache.set(key, bounds, 3600)
        return bounds

    def _area_query(self, county_name: str) -> str:
        county = _normalize_county(county_name)
        selectors = "\n".join(f"  nwr{f}[\"name\"](area.county_area);" for f in PLACE_FILTERS)
        return (
            f"[out:json][timeout:{self.timeout_seconds}];\n"
            f'area["boundary"="administrative"]["admin_level"~"^(6|7)$"]["name"~"^({county}|County {county})$"]->.county_area;\n'
            f"(\n{selectors}\n);\nout center;"
        )

    def _bbox_query(self, bounds: tuple[float, float, float, float], name_filter: str = "") -> str:
        min_lat, max_lat, min_lon, max_lon = bounds
        bbox = f"({min_lat},{min_lon},{max_lat},{max_lon})"
        name = f'["name"~"{name_filter}",i]' if name_filter else '["name"]'
        selectors = "\n".join(f"  nwr{f}{name}{bbox};" for f in PLACE_FILTERS)
        return f"[out:json][timeout:{self.timeout_seconds}];\n(\n{selectors}\n);\nout center;"

    def fetch_towns_for_county(self, county_name: str) -> list[Place]:
        key = f"towns_{county_name.strip().lower()}"
        cached = _cache.get(key)
        if cached is not None:
            return cached

        towns = self.run_query(self._area_query(county_name))
        if len(towns) < 10:
            logger.info("Area query returned %s places for %s, trying bbox fallback", len(towns), county_name)
            bounds = self.county_bounds(county_name)
            if bounds:
                bbox_towns = self.run_query(self._bbox_query(bounds))
                if len(bbox_towns) > len(towns):
                    towns = bbox_towns

        result = sorted(dedupe_places(towns), key=lambda p: p.name.lower())
        _cache.set(key, result, 300)
        return result

    def search_places(self, county_name: str, query: str) -> list[Place]:
        query = (query or "").strip()
        if not query:
            return []
        key = f"search_{county_name.strip().lower()}_{query.lower()}"
        cached = _cache.get(key)
        if cached is not None:
            return cached

        towns = _cache.get(f"towns_{county_name.strip().lower()}")
        if towns is not None:
            result = [t for t in towns if query.lower() in t.name.lower()]
        else:
            bounds = self.county_bounds(county_name)
            if not bounds:
                return []
            # Overpass regex; strip characters that would break the QL string.
            safe = "".join(ch for ch in query if ch.isalnum() or ch in " -'")
            result = dedupe_places(self.run_query(self._bbox_query(bounds, safe)))
        _cache.set(key, result, 1200)
        return result
