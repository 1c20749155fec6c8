import pytest
from starlette.testclient import TestClient

from conftest import ScriptedVision, items_json, png_bytes
from flyer_extraction.config import PipelineSettings, VisionConfig
from flyer_extraction.server import create_app
from flyer_extraction.web.fetch import HttpFetcher

AOBA_FLYER = "https://www.bicrise.com/flyer/ooshima-01.jpg"


def _client(session, *, api_key="test-key", vision=None):
    app = create_app(
        fetcher_factory=lambda: HttpFetcher(session=session),
        vision_factory=lambda cfg: vision or ScriptedVision(),
        renderer_factory=None,
        vision_config=VisionConfig(api_key=api_key, model_name="test-model"),
        settings=PipelineSettings(),
    )
    return TestClient(app)


@pytest.fixture
def client(session):
    return _client(session)


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "model": "test-model"}


def test_discover_fixed_store(client, session):
    resp = client.post("/api/flyer/discover", json={"storeId": "aoba_oshima"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["storeId"] == "aoba_oshima"
    assert [c["source"] for c in body["candidates"]] == ["fixed", "fixed"]
    assert body["warnings"] == []
    assert session.calls == []


def test_discover_unknown_store_is_400(client):
    resp = client.post("/api/flyer/discover", json={"storeId": "nope"})
    assert resp.status_code == 400
    assert "storeId is required" in resp.json()["error"]


def test_discover_store_page_failure_is_502(client):
    resp = client.post("/api/flyer/discover", json={"storeId": "life_kawasaki_oshima"})
    assert resp.status_code == 502
    assert "404" in resp.json()["error"]


def test_invalid_json_is_400(client):
    resp = client.post("/api/flyer/discover", content=b"{not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "invalid json"}


def test_resolve_requires_pages(client):
    resp = client.post("/api/flyer/resolve", json={"storeId": "aoba_oshima"})
    assert resp.status_code == 400


def test_resolve_single_page_url(client, session):
    session.add("https://www.bicrise.com/ooshima/", '<img src="/flyer/ooshima-01.jpg">')
    resp = client.post("/api/flyer/resolve", json={"storeId": "aoba_oshima", "pageUrl": "https://www.bicrise.com/ooshima/"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["targetPage"] == "https://www.bicrise.com/ooshima/"
    assert [c["url"] for c in body["candidates"]] == [AOBA_FLYER]
    assert body["meta"] == {"foundImages": 1, "checked": 1, "picked": 1}


def test_extract_url_validates_before_key_check(session):
    client = _client(session, api_key=None)
    assert client.post("/api/flyer/extract-url", json={"storeId": "aoba_oshima"}).status_code == 400
    resp = client.post("/api/flyer/extract-url", json={"storeId": "aoba_oshima", "urls": [AOBA_FLYER]})
    assert resp.status_code == 500
    assert "API key" in resp.json()["error"]
    assert session.calls == []


def test_extract_url_returns_items(session):
    session.add(AOBA_FLYER, png_bytes(600, 600), "image/jpeg")
    vision = ScriptedVision([items_json({"category": "鮮魚", "name": "生さけ切身", "priceYen": "298"})])
    resp = _client(session, vision=vision).post(
        "/api/flyer/extract-url", json={"storeId": "aoba_oshima", "url": AOBA_FLYER, "maxTiles": 3}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 1
    assert body["items"] == [{"category": "鮮魚", "name": "生さけ切身", "priceYen": 298}]
    assert body["meta"]["tiles"] == 1
    assert body["meta"]["storeId"] == "aoba_oshima"
    assert body["warnings"] == []
    assert vision.closed
    assert session.closed


def test_cors_default_origin(client):
    resp = client.options(
        "/api/flyer/discover",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
    )
    assert resp.headers.get("access-control-allow-origin") == "http://localhost:3000"
