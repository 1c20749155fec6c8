import io

from PIL import Image

from conftest import png_bytes
from flyer_extraction.domain.models import GridTile
from flyer_extraction.errors import FetchError
from flyer_extraction.pipeline.grid import compose_tiles, expand_tile_urls, group_tiles, parse_tile_url

DIR = "https://ipqcache2.shufoo.net/c/2025/01/10/123456/"
COLORS = [(255, 0, 0), (0, 255, 0), (0, 0, 255), (250, 250, 0)]


def test_indexed_tiles_form_one_group():
    urls = [f"{DIR}3_800_{i}.jpg" for i in range(4)]
    groups = group_tiles(urls + [urls[0]])
    assert len(groups) == 1
    tiles = groups[0].tiles
    assert len(tiles) == 4
    assert all(t.page == 3 for t in tiles)
    assert [(t.row, t.col) for t in tiles] == [(0, 0), (0, 1), (1, 0), (1, 1)]


def test_lone_tile_is_not_a_group():
    assert group_tiles([f"{DIR}3_800_0.jpg", f"{DIR}4_800_0.jpg"]) == []


def test_row_col_convention_and_page_order():
    urls = [
        f"{DIR}4_800_0.jpg",
        f"{DIR}4_800_1.jpg",
        "https://cdn.example.jp/f/leaf_00.png",
        "https://cdn.example.jp/f/leaf_01.png",
        "https://cdn.example.jp/f/leaf_10.png",
    ]
    groups = group_tiles(urls)
    assert [len(g.tiles) for g in groups] == [3, 2]
    assert groups[0].tiles[2].row == 1 and groups[0].tiles[2].col == 0
    assert groups[0].tiles[0].page is None


def test_tile_index_above_three_is_rejected():
    assert parse_tile_url(f"{DIR}3_800_4.jpg") is None
    assert parse_tile_url("/relative/3_800_0.jpg") is None


def test_expand_includes_next_page():
    urls = expand_tile_urls(f"{DIR}3_800_2.webp")
    assert len(urls) == 8
    assert urls[0] == f"{DIR}3_800_0.jpg"
    assert urls[-1] == f"{DIR}4_800_3.jpg"
    assert expand_tile_urls(f"{DIR}3_800_2.jpg", next_page=False)[-1] == f"{DIR}3_800_3.jpg"
    assert expand_tile_urls("https://x.jp/flyer.jpg") is None


def _tiles():
    return [GridTile(url=f"{DIR}3_800_{i}.jpg", row=i // 2, col=i % 2, page=3) for i in range(4)]


def test_compose_places_quadrants():
    blobs = {t.url: png_bytes(800, 600, COLORS[i]) for i, t in enumerate(_tiles())}
    page = compose_tiles(_tiles(), blobs.__getitem__, page_index=2)
    assert (page.width, page.height, page.page_index) == (1600, 1200, 2)
    with Image.open(io.BytesIO(page.png)) as im:
        assert im.getpixel((0, 0)) == COLORS[0]
        assert im.getpixel((800, 0)) == COLORS[1]
        assert im.getpixel((0, 600)) == COLORS[2]
        assert im.getpixel((800, 600)) == COLORS[3]


def test_compose_skips_missing_tile():
    tiles = _tiles()
    blobs = {t.url: png_bytes(800, 600, COLORS[i]) for i, t in enumerate(tiles) if i != 3}

    def load(url):
        if url not in blobs:
            raise FetchError(f"HTTP 404 for {url}")
        return blobs[url]

    page = compose_tiles(tiles, load)
    assert (page.width, page.height) == (1600, 1200)
    with Image.open(io.BytesIO(page.png)) as im:
        assert im.getpixel((1000, 900)) == (255, 255, 255)


def test_compose_needs_two_tiles():
    tiles = _tiles()

    def load(url):
        if url != tiles[0].url:
            raise FetchError("gone")
        return png_bytes(800, 600)

    assert compose_tiles(tiles, load) is None
