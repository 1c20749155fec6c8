import pytest

from flyer_extraction.domain.models import CandidateKind, CandidateSource
from flyer_extraction.errors import RequestValidationError
from flyer_extraction.pipeline.resolve import PageResolver, scrape_asset_urls
from flyer_extraction.stores.aoba import AobaStrategy
from flyer_extraction.stores.itoyokado import ItoyokadoStrategy
from flyer_extraction.web.render import DomImage, RenderResult

AOBA_PAGE = "https://www.bicrise.com/ooshima/"
VIEWER = "https://asp.shufoo.net/t/asp_iframe/shop/123/4567"


class FakeRenderer:
    def __init__(self, result=None, exc=None):
        self.result = result
        self.exc = exc
        self.rendered = []

    def render(self, url, **kwargs):
        self.rendered.append(url)
        if self.exc is not None:
            raise self.exc
        return self.result


def _aoba_page():
    imgs = [
        "/img/p1.jpg",
        "/img/p2.jpg",
        "/flyer/a.jpg",
        "/img/thumb1.jpg",
        "/img/p3.jpg",
        "/img/thumb2.jpg",
        "/flyer/b.jpg",
        "/img/p4.jpg",
        "/img/thumb3.jpg",
        "/img/p5.jpg",
    ]
    return "".join(f'<img src="{src}">' for src in imgs) + '<a href="/pdf/ooshima.pdf">PDF</a>'


def test_scrape_drops_thumbnails():
    images, pdfs = scrape_asset_urls(_aoba_page(), AOBA_PAGE)
    assert len(images) == 7
    assert pdfs == ["https://www.bicrise.com/pdf/ooshima.pdf"]


def test_resolve_ranks_and_filters_by_size(fetcher, session):
    session.add(AOBA_PAGE, _aoba_page())
    session.sizes["https://www.bicrise.com/flyer/a.jpg"] = 500_000
    session.sizes["https://www.bicrise.com/img/p1.jpg"] = 100_000

    result = AobaStrategy().resolve([AOBA_PAGE], PageResolver(fetcher))

    images = [c for c in result.candidates if c.kind is CandidateKind.IMAGE]
    assert [c.url for c in images] == [
        "https://www.bicrise.com/flyer/a.jpg",
        "https://www.bicrise.com/flyer/b.jpg",
        "https://www.bicrise.com/img/p2.jpg",
        "https://www.bicrise.com/img/p3.jpg",
        "https://www.bicrise.com/img/p4.jpg",
        "https://www.bicrise.com/img/p5.jpg",
    ]
    assert images[0].title == "メイン画像候補 1"
    assert all(c.source is CandidateSource.RESOLVE for c in images)
    assert result.candidates[0].kind is CandidateKind.PDF
    assert result.meta == {"foundImages": 7, "checked": 7, "picked": 6}
    assert result.warnings == ()


def test_resolve_caps_size_checks(fetcher, session):
    session.add(AOBA_PAGE, _aoba_page())
    result = AobaStrategy().resolve([AOBA_PAGE], PageResolver(fetcher, max_size_checks=3, max_images=2))
    assert result.meta == {"foundImages": 7, "checked": 3, "picked": 2}
    assert len(session.urls("HEAD")) == 3


def test_resolve_reports_page_fetch_failure(fetcher, session):
    result = AobaStrategy().resolve(["https://www.bicrise.com/missing/"], PageResolver(fetcher))
    assert result.candidates == ()
    assert result.warnings[0].startswith("fetch html failed:")
    assert result.meta["picked"] == 0


def test_resolve_rejects_off_allowlist_page(fetcher, session):
    result = AobaStrategy().resolve(["https://evil.example.com/"], PageResolver(fetcher))
    assert result.warnings[0].startswith("fetch html failed:")
    assert session.calls == []


def test_resolve_requires_pages(fetcher):
    with pytest.raises(RequestValidationError):
        AobaStrategy().resolve(["", "  "], PageResolver(fetcher))


def test_render_first_store_uses_state_block(fetcher, session):
    session.add(VIEWER, "<html><body><div id=app></div></body></html>")
    state = (
        '<script>window.State = {"p":["https://ipqcache2.shufoo.net/c/2025/1_800_0.jpg?w=600",'
        '"https://ipqcache2.shufoo.net/c/2025/1_800_1.jpg?w=600"]}; // end</script>'
    )
    renderer = FakeRenderer(RenderResult(url=VIEWER, html=state))

    result = ItoyokadoStrategy().resolve(["https://stores.itoyokado.co.jp/detail/547/", VIEWER], PageResolver(fetcher, renderer))

    assert renderer.rendered == [VIEWER]
    assert result.target_page == VIEWER
    assert [c.url for c in result.candidates] == [
        "https://ipqcache2.shufoo.net/c/2025/1_800_0.jpg?w=2000",
        "https://ipqcache2.shufoo.net/c/2025/1_800_1.jpg?w=2000",
    ]
    assert all(c.source is CandidateSource.RESOLVE_RENDERED for c in result.candidates)


def test_render_falls_back_to_largest_allowed_dom_image(fetcher, session):
    session.add(VIEWER, "<html></html>")
    rendered = RenderResult(
        url=VIEWER,
        dom_images=[
            DomImage("https://s-cmn.shufoo.net/small.jpg", 100, 100),
            DomImage("https://s-cmn.shufoo.net/big.jpg", 1200, 1700),
            DomImage("https://cdn.other.example/huge.jpg", 4000, 4000),
        ],
    )
    result = ItoyokadoStrategy().resolve([VIEWER], PageResolver(fetcher, FakeRenderer(rendered)))
    assert [(c.url, c.source) for c in result.candidates] == [
        ("https://s-cmn.shufoo.net/big.jpg", CandidateSource.RESOLVE_RENDERED)
    ]
    assert "Skipped 1 rendered image URL(s) outside the store allowlist" in result.warnings


def test_size_check_redirect_off_allowlist_drops_image(fetcher, session):
    session.add(AOBA_PAGE, '<img src="/flyer/a.jpg"><img src="/flyer/b.jpg">')
    session.redirect("https://www.bicrise.com/flyer/a.jpg", "https://evil.example.net/a.jpg")
    session.sizes["https://www.bicrise.com/flyer/b.jpg"] = 400_000
    result = AobaStrategy().resolve([AOBA_PAGE], PageResolver(fetcher))
    assert [c.url for c in result.candidates if c.kind is CandidateKind.IMAGE] == ["https://www.bicrise.com/flyer/b.jpg"]
    assert any("redirecting outside the store allowlist" in w for w in result.warnings)
    assert all("evil.example.net" not in u for _, u in session.calls)


def test_render_failure_becomes_warning(fetcher, session):
    session.add(VIEWER, "<html></html>")
    result = ItoyokadoStrategy().resolve([VIEWER], PageResolver(fetcher, FakeRenderer(exc=RuntimeError("browser crashed"))))
    assert result.candidates == ()
    assert result.warnings == (
        "Rendered resolve failed: browser crashed",
        "Rendering did not yield a main image URL either",
    )


def test_assets_from_html_prefers_non_thumbnails():
    store = AobaStrategy()
    html = '<img src="/flyer/thumb_a.jpg"><img src="/img/x.jpg"><img src="/flyer/a.jpg"><img src="https://evil.example/z.jpg">'
    out = PageResolver(fetcher=None).assets_from_html(store, html, AOBA_PAGE)
    assert out.value == ["https://www.bicrise.com/flyer/a.jpg", "https://www.bicrise.com/img/x.jpg"]
    assert out.warnings == ()

    only_thumbs = PageResolver(fetcher=None).assets_from_html(store, '<img src="/flyer/thumb_a.jpg">', AOBA_PAGE)
    assert only_thumbs.value == ["https://www.bicrise.com/flyer/thumb_a.jpg"]
    assert "Only thumbnail images" in only_thumbs.warnings[0]
