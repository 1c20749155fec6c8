"""Turn fetched flyer assets (PDF or raster image) into PNG page bitmaps."""

from __future__ import annotations

import io
from typing import List

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from ..domain.models import Outcome, PageBitmap
from ..logging import get_logger
from ..web.fetch import FetchedResource, is_pdf_by_type_or_url

LOG = get_logger("assets")

PDF_DPI = 200


def rasterize_pdf(data: bytes, dpi: int = PDF_DPI) -> List[PageBitmap]:
    """Render every PDF page at ``dpi``; an unreadable document yields no pages."""
    pages: List[PageBitmap] = []
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:  # malformed upstream bytes
        LOG.warning(f"PDF could not be opened: {exc}")
        return pages
    with doc:
        mat = fitz.Matrix(dpi / 72, dpi / 72)
        for i, page in enumerate(doc):
            pix = page.get_pixmap(matrix=mat, alpha=False)
            pages.append(PageBitmap(png=pix.tobytes("png"), page_index=i, width=pix.width, height=pix.height))
    LOG.info("Rasterized PDF: %d page(s) at %d DPI", len(pages), dpi)
    return pages


def normalize_image(data: bytes) -> PageBitmap:
    """Decode any Pillow-readable image and re-encode it as PNG.

    Raises ``UnidentifiedImageError`` (an OSError) for undecodable bytes.
    """
    with Image.open(io.BytesIO(data)) as im:
        im.load()
        if im.mode not in ("RGB", "L"):
            im = im.convert("RGB")
        buf = io.BytesIO()
        im.save(buf, format="PNG")
        return PageBitmap(png=buf.getvalue(), page_index=0, width=im.width, height=im.height)


def normalize_asset(resource: FetchedResource) -> Outcome[List[PageBitmap]]:
    """PDF -> one bitmap per page; image -> one bitmap; anything else -> a warning."""
    if is_pdf_by_type_or_url(resource.content_type, resource.url):
        pages = rasterize_pdf(resource.content)
        if not pages:
            return Outcome.of([], [f"PDF had 0 pages after convert: {resource.url}"])
        return Outcome.of(pages)

    content_type = (resource.content_type or "").split(";", 1)[0].strip().lower()
    if content_type and not content_type.startswith("image/") and content_type != "application/octet-stream":
        return Outcome.of([], [f"Unsupported asset type: {resource.url} ({resource.content_type})"])
    try:
        return Outcome.of([normalize_image(resource.content)])
    except (UnidentifiedImageError, OSError) as exc:
        label = resource.content_type or "unknown content-type"
        return Outcome.of([], [f"Unsupported asset type: {resource.url} ({label}): {exc}"])
