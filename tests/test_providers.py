import pytest
import requests

from conftest import FakeResp, geojson
from location_history.errors import (
    ProviderEmptyResult,
    ProviderHTTPError,
    QuotaExceeded,
)
from location_history.providers import MapboxMatcher, OsrmMatcher
from location_history.providers.mapbox import format_coordinates, parse_geometry
from location_history.providers.response_handling import redact_url


COORDS = [(52.0, 13.0), (52.1, 13.1)]


@pytest.fixture
def session():
    return requests.Session()


def _install(monkeypatch, session, *responses):
    calls = []
    queue = list(responses)

    def fake_get(url, params=None, timeout=None):
        calls.append(url)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(session, "get", fake_get)
    return calls


def test_format_and_parse_coordinates():
    assert format_coordinates(COORDS) == "13.000000,52.000000;13.100000,52.100000"
    assert parse_geometry(geojson(COORDS)) == COORDS
    assert parse_geometry(None) == []
    assert parse_geometry({"coordinates": [[1.0], "x", [2.0, 3.0]]}) == [(3.0, 2.0)]


def test_mapbox_url_shape():
    matcher = MapboxMatcher("pk.abc", session=object())
    url = matcher.build_url(COORDS, [1709280000, 1709280060])

    assert url == (
        "https://api.mapbox.com/matching/v5/mapbox/driving/"
        "13.000000,52.000000;13.100000,52.100000"
        "?access_token=pk.abc&timestamps=1709280000;1709280060"
        "&geometries=geojson&overview=full&tidy=true&radiuses=25;25"
    )
    assert "timestamps" not in matcher.build_url(COORDS)


def test_mapbox_match_returns_first_matching(monkeypatch, session):
    snapped = [(52.0001, 13.0001), (52.05, 13.05), (52.1001, 13.1001)]
    calls = _install(
        monkeypatch,
        session,
        FakeResp(200, {"code": "Ok", "matchings": [{"geometry": geojson(snapped)}, {"geometry": geojson(COORDS)}]}),
    )
    matcher = MapboxMatcher("pk.abc", session=session)

    assert matcher.match(COORDS, [1, 2]) == snapped
    assert len(calls) == 1


def test_mapbox_errors_are_classified(monkeypatch, session):
    _install(
        monkeypatch,
        session,
        FakeResp(429, {"message": "Too Many Requests"}),
        FakeResp(401, {"message": "Not Authorized - Invalid Token"}),
        FakeResp(200, {"code": "NoMatch", "matchings": []}),
        FakeResp(200, {"code": "Ok", "matchings": [{"geometry": geojson([(1.0, 1.0)])}]}),
        requests.ConnectionError("boom"),
    )
    matcher = MapboxMatcher("pk.abc", session=session)

    with pytest.raises(QuotaExceeded):
        matcher.match(COORDS)
    with pytest.raises(ProviderHTTPError) as excinfo:
        matcher.match(COORDS)
    assert excinfo.value.status_code == 401
    assert "Invalid Token" in str(excinfo.value)
    with pytest.raises(ProviderEmptyResult):
        matcher.match(COORDS)
    with pytest.raises(ProviderEmptyResult):
        matcher.match(COORDS)
    with pytest.raises(ProviderHTTPError):
        matcher.match(COORDS)


def test_osrm_urls():
    matcher = OsrmMatcher(session=object())
    assert matcher.match_url(COORDS) == (
        "https://router.project-osrm.org/match/v1/driving/"
        "13.000000,52.000000;13.100000,52.100000"
        "?geometries=geojson&overview=full&annotations=nodes"
    )
    assert matcher.route_url(COORDS) == (
        "https://router.project-osrm.org/route/v1/driving/"
        "13.000000,52.000000;13.100000,52.100000"
        "?geometries=geojson&overview=full"
    )


def test_osrm_match_merges_all_matchings(monkeypatch, session):
    first = [(52.0, 13.0), (52.05, 13.05)]
    second = [(52.06, 13.06), (52.1, 13.1)]
    _install(
        monkeypatch,
        session,
        FakeResp(200, {"code": "Ok", "matchings": [{"geometry": geojson(first)}, {"geometry": geojson(second)}]}),
    )
    assert OsrmMatcher(session=session).match(COORDS) == first + second


def test_osrm_no_match_code_is_empty_result(monkeypatch, session):
    _install(
        monkeypatch,
        session,
        FakeResp(400, {"code": "NoMatch", "message": "Could not match the trace."}),
        FakeResp(400, {"code": "InvalidQuery", "message": "Query string malformed"}),
        FakeResp(200, {"code": "Ok", "matchings": []}),
    )
    matcher = OsrmMatcher(session=session)

    with pytest.raises(ProviderEmptyResult):
        matcher.match(COORDS)
    with pytest.raises(ProviderHTTPError) as excinfo:
        matcher.match(COORDS)
    assert not isinstance(excinfo.value, ProviderEmptyResult)
    assert excinfo.value.error_code == "InvalidQuery"
    with pytest.raises(ProviderEmptyResult):
        matcher.match(COORDS)


def test_osrm_route(monkeypatch, session):
    routed = [(52.0, 13.0), (52.02, 13.01), (52.1, 13.1)]
    _install(
        monkeypatch,
        session,
        FakeResp(200, {"code": "Ok", "routes": [{"geometry": geojson(routed)}]}),
        FakeResp(200, {"code": "Ok", "routes": []}),
    )
    matcher = OsrmMatcher(session=session)
    assert matcher.route(COORDS) == routed
    with pytest.raises(ProviderEmptyResult):
        matcher.route(COORDS)


def test_non_json_body_is_http_error(monkeypatch, session):
    _install(monkeypatch, session, FakeResp(200, ValueError("not json")))
    with pytest.raises(ProviderHTTPError):
        OsrmMatcher(session=session).match(COORDS)


def test_redact_url_masks_token():
    url = "https://api.mapbox.com/matching/v5/x?access_token=pk.secret&tidy=true"
    assert redact_url(url) == "https://api.mapbox.com/matching/v5/x?access_token=***&tidy=true"


def test_default_session_disables_in_place_retries():
    from location_history.providers import create_default_session

    session = create_default_session()
    adapter = session.get_adapter("https://router.project-osrm.org")
    assert adapter.max_retries.total == 0
    assert session.headers["Accept"] == "application/json"


def test_parse_geometry_skips_non_numeric_vertices():
    geometry = {"coordinates": [[None, None], [13.0, "52"], [True, 52.0], [13.0, 95.0], [13.0, 52.0]]}
    assert parse_geometry(geometry) == [(52.0, 13.0)]


def test_mapbox_malformed_matching_is_empty_result(monkeypatch, session):
    _install(
        monkeypatch,
        session,
        FakeResp(200, {"code": "Ok", "matchings": [None]}),
        FakeResp(200, {"code": "Ok", "matchings": {"geometry": geojson(COORDS)}}),
    )
    matcher = MapboxMatcher("pk.abc", session=session)

    with pytest.raises(ProviderEmptyResult):
        matcher.match(COORDS)
    with pytest.raises(ProviderEmptyResult):
        matcher.match(COORDS)


def test_osrm_malformed_routes_are_empty_results(monkeypatch, session):
    _install(
        monkeypatch,
        session,
        FakeResp(200, {"code": "Ok", "routes": {"geometry": geojson(COORDS)}}),
        FakeResp(200, {"code": "Ok", "routes": ["bad"]}),
        FakeResp(200, {"code": "Ok", "matchings": "bad"}),
    )
    matcher = OsrmMatcher(session=session)

    with pytest.raises(ProviderEmptyResult):
        matcher.route(COORDS)
    with pytest.raises(ProviderEmptyResult):
        matcher.route(COORDS)
    with pytest.raises(ProviderEmptyResult):
        matcher.match(COORDS)


def test_session_identifies_client_and_is_shared():
    from location_history.providers import close_default_session, get_default_session
    from location_history.providers.session import create_default_session

    custom = create_default_session(retries=2, user_agent="tests/1.0")
    assert custom.headers["User-Agent"] == "tests/1.0"
    assert custom.get_adapter("https://api.mapbox.com").max_retries.total == 2

    first = get_default_session()
    assert get_default_session() is first
    assert first.headers["User-Agent"].startswith("location-history-kml/")
    close_default_session()
    assert get_default_session() is not first
