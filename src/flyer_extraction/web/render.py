"""Headless-browser rendering for flyer viewers that build their DOM in script."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from ..logging import get_logger
from .fetch import BROWSER_UA

LOG = get_logger("web-render")

NAVIGATION_TIMEOUT_MS = 45_000
SETTLE_MS = 2_500

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

_DOM_IMAGES_JS = """
() => Array.from(document.images || []).map((img) => ({
    src: img.currentSrc || img.src || "",
    w: img.naturalWidth || img.clientWidth || 0,
    h: img.naturalHeight || img.clientHeight || 0,
}))
"""


@dataclass(frozen=True)
class DomImage:
    src: str
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class ObservedImage:
    url: str
    size: int  # declared content-length, 0 when absent


@dataclass
class RenderResult:
    url: str
    html: str = ""
    dom_images: List[DomImage] = field(default_factory=list)
    observed_images: List[ObservedImage] = field(default_factory=list)

    def dom_by_area(self, limit: int = 10) -> List[DomImage]:
        ranked = [d for d in self.dom_images if d.src and d.area > 0]
        ranked.sort(key=lambda d: d.area, reverse=True)
        return ranked[:limit]

    def observed_by_size(self) -> List[ObservedImage]:
        return sorted(self.observed_images, key=lambda o: o.size, reverse=True)


class PlaywrightRenderer:
    """Render a page in headless Chromium and report image evidence.

    One browser is launched per ``render`` call and closed on every exit path.
    """

    def __init__(
        self,
        *,
        viewport: Tuple[int, int] = (1280, 900),
        user_agent: str = BROWSER_UA,
    ) -> None:
        self.viewport = viewport
        self.user_agent = user_agent

    def render(
        self,
        url: str,
        *,
        wait_until: str = "domcontentloaded",
        timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        settle_ms: int = SETTLE_MS,
    ) -> RenderResult:
        from playwright.sync_api import sync_playwright

        LOG.info("Rendering %s (wait_until=%s, timeout=%dms, settle=%dms)", url, wait_until, timeout_ms, settle_ms)
        result = RenderResult(url=url)

        def on_response(response) -> None:
            try:
                headers = response.headers
                content_type = (headers.get("content-type") or "").lower()
                if not content_type.startswith("image/"):
                    return
                try:
                    size = int(headers.get("content-length") or 0)
                except ValueError:
                    size = 0
                result.observed_images.append(ObservedImage(url=response.url, size=size))
            except Exception as exc:  # listener must not break navigation
                LOG.debug(f"Response listener error: {exc}")

        with sync_playwright() as p:
            browser = p.chromium.launch(headless=True, args=_LAUNCH_ARGS)
            try:
                context = browser.new_context(
                    user_agent=self.user_agent,
                    viewport={"width": self.viewport[0], "height": self.viewport[1]},
                )
                page = context.new_page()
                page.on("response", on_response)
                page.goto(url, wait_until=wait_until, timeout=timeout_ms)
                page.wait_for_timeout(settle_ms)
                result.html = page.content()
                for raw in page.evaluate(_DOM_IMAGES_JS) or []:
                    result.dom_images.append(
                        DomImage(src=str(raw.get("src") or ""), width=int(raw.get("w") or 0), height=int(raw.get("h") or 0))
                    )
            finally:
                browser.close()

        LOG.info(
            "Rendered %s: %d DOM image(s), %d image response(s)",
            url,
            len(result.dom_images),
            len(result.observed_images),
        )
        return result
