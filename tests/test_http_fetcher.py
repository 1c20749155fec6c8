import io
import threading

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from flyer_extraction.errors import FetchError, PipelineCancelled, UrlNotAllowedError
from flyer_extraction.web.fetch import HTML_POLICY, MAX_REDIRECTS, FetchPolicy, HttpFetcher, assert_allowed_url

ALLOWED = ["www.lifecorp.jp", "tokubai.co.jp"]


def test_disallowed_host_rejected_before_any_request(fetcher, session):
    with pytest.raises(UrlNotAllowedError):
        fetcher.fetch("https://evil.example.com/a.jpg", allowed_hosts=ALLOWED)
    assert session.calls == []


def test_non_http_scheme_rejected():
    with pytest.raises(UrlNotAllowedError):
        assert_allowed_url("ftp://www.lifecorp.jp/a.pdf", ALLOWED)
    with pytest.raises(UrlNotAllowedError):
        assert_allowed_url("https://sub.tokubai.co.jp/a.jpg", ALLOWED)


def test_redirect_off_allowlist_is_rejected(fetcher, session):
    url = "https://www.lifecorp.jp/store/flyer"
    session.redirect(url, "https://tracker.example.net/landing")
    session.add("https://tracker.example.net/landing", "<html></html>")
    with pytest.raises(UrlNotAllowedError):
        fetcher.fetch(url, HTML_POLICY, allowed_hosts=ALLOWED)
    assert session.urls() == [url]


class RecordingAdapter(BaseAdapter):
    """Transport adapter answering from a (method, url) table and recording every request."""

    def __init__(self, routes):
        super().__init__()
        self.routes = routes
        self.seen = []

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.seen.append((request.method, request.url))
        status, headers, body = self.routes.get((request.method, request.url), (404, {}, b""))
        resp = requests.Response()
        resp.status_code = status
        resp.reason = "OK" if status < 400 else "Not Found"
        resp.headers = CaseInsensitiveDict(headers)
        resp.raw = io.BytesIO(body)
        resp.url = request.url
        resp.request = request
        return resp

    def close(self):
        pass


def _real_fetcher(routes):
    adapter = RecordingAdapter(routes)
    s = requests.Session()
    s.mount("https://", adapter)
    return HttpFetcher(session=s), adapter


BICRISE = ["www.bicrise.com", "bicrise.com"]
FLYER_JPG = "https://www.bicrise.com/flyer/a.jpg"
STEAL_JPG = "https://evil.example.net/steal.jpg"


def test_redirect_to_foreign_host_is_never_requested():
    fetcher, adapter = _real_fetcher(
        {
            ("GET", FLYER_JPG): (302, {"Location": STEAL_JPG}, b""),
            ("HEAD", FLYER_JPG): (302, {"Location": STEAL_JPG}, b""),
            ("GET", STEAL_JPG): (200, {"Content-Type": "image/jpeg"}, b"stolen"),
        }
    )
    with pytest.raises(UrlNotAllowedError):
        fetcher.fetch(FLYER_JPG, allowed_hosts=BICRISE)
    with pytest.raises(UrlNotAllowedError):
        fetcher.content_length(FLYER_JPG, allowed_hosts=BICRISE)
    assert all("evil.example.net" not in u for _, u in adapter.seen)
    assert adapter.seen == [("GET", FLYER_JPG), ("HEAD", FLYER_JPG)]


def test_redirect_within_allowlist_is_followed():
    fetcher, adapter = _real_fetcher(
        {
            ("GET", FLYER_JPG): (301, {"Location": "https://bicrise.com/flyer/b.jpg"}, b""),
            ("GET", "https://bicrise.com/flyer/b.jpg"): (200, {"Content-Type": "image/jpeg"}, b"\xff\xd8jpeg"),
        }
    )
    res = fetcher.fetch(FLYER_JPG, allowed_hosts=BICRISE)
    assert res.content == b"\xff\xd8jpeg"
    assert res.content_type == "image/jpeg"
    assert [u for _, u in adapter.seen] == [FLYER_JPG, "https://bicrise.com/flyer/b.jpg"]


def test_redirect_loop_gives_up():
    loop = "https://www.bicrise.com/loop"
    fetcher, adapter = _real_fetcher({("GET", loop): (302, {"Location": "/loop"}, b"")})
    with pytest.raises(FetchError, match="too many redirects"):
        fetcher.fetch(loop, allowed_hosts=BICRISE)
    assert len(adapter.seen) == MAX_REDIRECTS + 1


def test_content_length_falls_back_to_ranged_get():
    fetcher, adapter = _real_fetcher(
        {
            ("HEAD", FLYER_JPG): (200, {}, b""),
            ("GET", FLYER_JPG): (206, {"Content-Range": "bytes 0-0/345678"}, b"\xff"),
        }
    )
    assert fetcher.content_length(FLYER_JPG, allowed_hosts=BICRISE) == 345_678
    assert adapter.seen == [("HEAD", FLYER_JPG), ("GET", FLYER_JPG)]


def test_fetch_returns_body_and_content_type(fetcher, session):
    url = "https://tokubai.co.jp/images/leaflet.jpg"
    session.add(url, b"\xff\xd8jpeg", "image/jpeg")
    res = fetcher.fetch(url, allowed_hosts=ALLOWED)
    assert res.content == b"\xff\xd8jpeg"
    assert res.content_type == "image/jpeg"
    assert not res.is_pdf()


def test_size_cap_enforced(fetcher, session):
    url = "https://tokubai.co.jp/big.pdf"
    session.add(url, b"x" * 100, "application/pdf")
    with pytest.raises(FetchError, match="too large"):
        fetcher.fetch(url, FetchPolicy(max_bytes=10))


def test_http_error_status(fetcher, session):
    with pytest.raises(FetchError) as info:
        fetcher.fetch("https://tokubai.co.jp/missing.jpg")
    assert info.value.status_code == 404


def test_transport_error_wrapped(fetcher, session):
    url = "https://tokubai.co.jp/slow.jpg"
    session.fail(url, requests.ConnectionError("connection reset"))
    with pytest.raises(FetchError, match="connection reset"):
        fetcher.fetch(url)


def test_cancelled_fetch_never_hits_network(session):
    cancel = threading.Event()
    cancel.set()
    fetcher = HttpFetcher(session=session, cancel=cancel)
    with pytest.raises(PipelineCancelled):
        fetcher.fetch("https://tokubai.co.jp/a.jpg")
    assert session.calls == []


def test_content_length_via_head_and_ranged_get(fetcher, session):
    url = "https://tokubai.co.jp/a.jpg"
    session.sizes[url] = 512_000
    assert fetcher.content_length(url, referer="https://www.lifecorp.jp/") == 512_000
    assert fetcher.content_length("https://tokubai.co.jp/unknown.jpg") == 0
    assert session.urls("GET") == ["https://tokubai.co.jp/unknown.jpg"]


def test_policy_headers():
    h = HTML_POLICY.with_referer("https://www.lifecorp.jp/").headers()
    assert h["Cache-Control"] == "no-store"
    assert h["Referer"] == "https://www.lifecorp.jp/"
    assert h["Accept-Language"].startswith("ja")
    assert "Referer" not in HTML_POLICY.headers()
