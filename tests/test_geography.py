"""Tests for counties, localities and the Overpass client."""
import urllib.error

import pytest

from app.spipuniform.db import session_scope
from app.spipuniform.modules.geography import api as geography_api
from app.spipuniform.modules.geography import overpass_client as oc
from app.spipuniform.modules.geography.models import County, Locality
from app.spipuniform.modules.geography.service import get_or_create_county, seed_irish_counties


@pytest.fixture(autouse=True)
def _fresh_cache():
    oc.clear_cache()
    yield
    oc.clear_cache()


def _element(osm_id, name, place="town", lat=51.9, lon=-8.4, center=False):
    el = {"id": osm_id, "tags": {"name": name, "place": place}}
    if center:
        el["center"] = {"lat": lat, "lon": lon}
    else:
        el["lat"], el["lon"] = lat, lon
    return el


def _http_error(code):
    return urllib.error.HTTPError("https://overpass.example/api", code, "err", {}, None)


def test_parse_elements_skips_unnamed_and_uses_center():
    data = {
        "elements": [
            _element(1, "Cobh"),
            _element(2, "Kinsale", center=True),
            {"id": 3, "tags": {"place": "village"}, "lat": 1, "lon": 1},
            {"id": 4, "tags": {"name": "Nowhere"}},
            {"id": 5, "tags": {"name": "Inchydoney", "natural": "beach"}, "lat": 51.6, "lon": -8.8},
        ]
    }
    places = oc.parse_elements(data)
    assert [p.name for p in places] == ["Cobh", "Kinsale", "Inchydoney"]
    assert places[1].lat == 51.9
    assert places[2].place_type == "beach"


def test_dedupe_places_case_insensitive():
    places = [oc.Place(1, "Cobh", "town", 0, 0), oc.Place(2, "COBH ", "town", 0, 0), oc.Place(3, "Youghal", "town", 0, 0)]
    assert [p.osm_id for p in oc.dedupe_places(places)] == [1, 3]


def test_retry_delay_backoff():
    assert [oc.retry_delay(n) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_run_query_retries_only_on_429():
    sleeps = []
    client = oc.OverpassClient(sleep=sleeps.append)
    calls = {"n": 0}

    def _post(query):
        calls["n"] += 1
        if calls["n"] < 3:
            raise _http_error(429)
        return {"elements": [_element(1, "Cobh")]}

    client._post = _post
    places = client.run_query("q")
    assert [p.name for p in places] == ["Cobh"]
    assert calls["n"] == 3
    assert 1.0 in sleeps and 2.0 in sleeps


def test_run_query_gives_up_after_max_retries():
    client = oc.OverpassClient(sleep=lambda _s: None)

    def _post(query):
        raise _http_error(429)

    client._post = _post
    with pytest.raises(oc.OverpassRateLimited):
        client.run_query("q")


def test_run_query_other_http_errors_fail_fast():
    client = oc.OverpassClient(sleep=lambda _s: None)
    calls = {"n": 0}

    def _post(query):
        calls["n"] += 1
        raise _http_error(504)

    client._post = _post
    with pytest.raises(oc.OverpassError, match="504"):
        client.run_query("q")
    assert calls["n"] == 1


def test_fetch_towns_falls_back_to_bbox_and_caches():
    client = oc.OverpassClient(sleep=lambda _s: None)
    queries = []

    def _run(query):
        queries.append(query)
        if "area.county_area" in query:
            return [oc.Place(1, "Cobh", "town", 0, 0)]
        return [oc.Place(i, f"Town {i:02d}", "village", 0, 0) for i in range(12)]

    client.run_query = _run
    towns = client.fetch_towns_for_county("County Cork")
    assert len(towns) == 12
    assert len(queries) == 2
    assert "(51.3,-10.0,52.3,-7.8)" in queries[1]

    # Cached.
    client.fetch_towns_for_county("County Cork")
    assert len(queries) == 2

    # Search reuses the cached town list.
    assert [p.name for p in client.search_places("County Cork", "town 1")] == ["Town 10", "Town 11"]
    assert len(queries) == 2


def test_seed_counties_idempotent(app):
    with session_scope(app) as s:
        assert seed_irish_counties(s) == 26
        assert seed_irish_counties(s) == 0
        cork = get_or_create_county(s, "County Cork")
        assert cork.name == "Cork"
        assert cork.bounding_box["min_lat"] == 51.3


class FakeOverpass:
    def __init__(self, places=None, error=None):
        self.places = places or []
        self.error = error
        self.calls = []

    def fetch_towns_for_county(self, county_name):
        self.calls.append(county_name)
        if self.error:
            raise self.error
        return self.places

    def search_places(self, county_name, query):
        self.calls.append((county_name, query))
        if self.error:
            raise self.error
        return [p for p in self.places if query.lower() in p.name.lower()]


def _cork_id(app):
    with session_scope(app) as s:
        seed_irish_counties(s)
        return s.query(County).filter(County.name == "Cork").one().id


def test_fetch_localities_endpoint(app, admin_client, monkeypatch):
    cork_id = _cork_id(app)
    fake = FakeOverpass(
        places=[
            oc.Place(10, "Cobh", "town", 51.85, -8.29),
            oc.Place(11, "Kinsale", "town", 51.70, -8.52),
            oc.Place(12, "Ballincollig", "town", 51.89, -8.59),
        ]
    )
    monkeypatch.setattr(geography_api, "overpass_client", lambda: fake)

    r = admin_client.post(f"/api/localities/fetch/{cork_id}")
    assert r.status_code == 200
    assert r.json["data"] == {"county_id": cork_id, "county_name": "Cork", "fetched": 3, "inserted": 3, "skipped": 0}

    # Existing names are skipped on re-fetch.
    fake.places.append(oc.Place(13, "COBH", "town", 0, 0))
    r = admin_client.post(f"/api/localities/fetch/{cork_id}")
    assert r.json["data"]["inserted"] == 0
    assert r.json["data"]["skipped"] == 4

    r = admin_client.get(f"/api/counties/{cork_id}")
    assert r.json["data"]["locality_count"] == 3

    r = admin_client.get(f"/api/localities?county_id={cork_id}")
    assert [l["name"] for l in r.json["data"]] == ["Ballincollig", "Cobh", "Kinsale"]
    assert r.json["data"][1]["centre_lat"] == 51.85

    r = admin_client.get("/api/localities/search?q=co")
    assert [l["name"] for l in r.json["data"]] == ["Cobh", "Ballincollig"]


def test_fetch_localities_upstream_error(app, admin_client, monkeypatch):
    cork_id = _cork_id(app)
    monkeypatch.setattr(geography_api, "overpass_client", lambda: FakeOverpass(error=oc.OverpassError("Overpass API error: 504")))
    r = admin_client.post(f"/api/localities/fetch/{cork_id}")
    assert r.status_code == 502
    assert "504" in r.json["error"]


def test_fetch_localities_requires_permission(app, user_client):
    cork_id = _cork_id(app)
    assert user_client.post(f"/api/localities/fetch/{cork_id}").status_code == 403
    assert user_client.post("/api/localities/fetch/9999").status_code == 403


def test_public_county_listing(app, client):
    _cork_id(app)
    r = client.get("/api/counties")
    assert r.status_code == 200
    assert len(r.json["data"]) == 26
    assert r.json["data"][0]["name"] == "Carlow"
    assert client.get("/api/counties/9999").status_code == 404


def test_run_query_read_timeout_is_upstream_error():
    client = oc.OverpassClient(sleep=lambda _s: None)

    def _post(query):
        raise TimeoutError("The read operation timed out")

    client._post = _post
    with pytest.raises(oc.OverpassError, match="timed out"):
        client.run_query("q")


def test_fetch_localities_read_timeout_returns_502(app, admin_client, monkeypatch):
    cork_id = _cork_id(app)
    client = oc.OverpassClient(sleep=lambda _s: None)

    def _post(query):
        raise TimeoutError("The read operation timed out")

    client._post = _post
    monkeypatch.setattr(geography_api, "overpass_client", lambda: client)
    r = admin_client.post(f"/api/localities/fetch/{cork_id}")
    assert r.status_code == 502


def test_ttl_cache_is_bounded():
    cache = oc._TTLCache(max_entries=3)
    cache.set("stale", 1, -1)
    for key in ("a", "b", "c", "d"):
        cache.set(key, key, 60)
    assert len(cache) == 3
    assert cache.get("stale") is None
    assert cache.get("d") == "d"


def test_locality_search_falls_back_to_osm(app, client, monkeypatch):
    cork_id = _cork_id(app)
    fake = FakeOverpass(places=[oc.Place(21, "Crosshaven", "village", 51.80, -8.30), oc.Place(22, "Carrigaline", "town", 51.81, -8.39)])
    monkeypatch.setattr(geography_api, "overpass_client", lambda: fake)

    r = client.get(f"/api/localities/search?q=cross&county_id={cork_id}")
    assert r.status_code == 200
    assert r.json["data"] == [
        {
            "id": None,
            "county_id": cork_id,
            "county_name": "Cork",
            "name": "Crosshaven",
            "osm_id": "21",
            "place_type": "village",
            "centre_lat": 51.80,
            "centre_lng": -8.30,
            "source": "osm",
        }
    ]
    assert fake.calls == [("Cork", "cross")]

    # Too short, or no county: stored results only.
    assert client.get(f"/api/localities/search?q=c&county_id={cork_id}").json["data"] == []
    assert client.get("/api/localities/search?q=cross").json["data"] == []
    assert len(fake.calls) == 1

    assert client.get("/api/localities/search?q=cross&county_id=9999").status_code == 404

    monkeypatch.setattr(geography_api, "overpass_client", lambda: FakeOverpass(error=oc.OverpassRateLimited("429")))
    assert client.get(f"/api/localities/search?q=cross&county_id={cork_id}").status_code == 429


def test_locality_search_limit_is_clamped(app, client):
    with session_scope(app) as s:
        cork = get_or_create_county(s, "Cork")
        for name in ("Cobh", "Cork City", "Courtmacsherry"):
            s.add(Locality(county=cork, name=name))
    r = client.get("/api/localities/search?q=co&limit=0")
    assert len(r.json["data"]) == 1
