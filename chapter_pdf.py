# -*- coding: utf-8 -*-
# ------------------------------------------------------------------
# Chapter → PDF: page retrieval and in-memory document assembly
# -----------------------------------------------------------
import io
import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import requests
from PIL import Image
from pypdf import PdfReader, PdfWriter

from sites.base import BaseSiteHandler, ChapterManifest
from sites.errors import DownloadCancelled, ImageDecodeFailed, PageFetchFailed
from sites.http import CatalogClient

logger = logging.getLogger(__name__)

PRODUCER = "chapter-pdf-server"


@dataclass(frozen=True)
class PageImage:
    index: int
    data: bytes


@dataclass(frozen=True)
class PageLayout:
    """Page geometry in PDF points (1/72 inch)."""

    page_size: Tuple[float, float] = (612.0, 792.0)  # US Letter
    fit_box: Tuple[float, float] = (500.0, 700.0)
    margin: float = 72.0
    dpi: int = 144

    def __post_init__(self):
        if self.dpi <= 0:
            raise ValueError("dpi must be positive")
        page_w, page_h = self.page_size
        box_w, box_h = self.fit_box
        if box_w <= 0 or box_h <= 0:
            raise ValueError("fit_box must be positive")
        if self.margin + box_w > page_w or self.margin + box_h > page_h:
            raise ValueError("fit_box does not fit on the page at this margin")


def _check_cancel(cancel: Optional[threading.Event], what: str) -> None:
    if cancel is not None and cancel.is_set():
        raise DownloadCancelled(f"Stopped before {what}")


# -----------------------------------------------------------
# Retrieval
# -----------------------------------------------------------
def retrieve_pages(
    manifest: ChapterManifest,
    client: CatalogClient,
    *,
    cancel: Optional[threading.Event] = None,
) -> List[PageImage]:
    """
    Fetches every page of the manifest, one after another, in reading order.
    The first failed page aborts the whole chapter; nothing is retried.
    """
    total = len(manifest.page_filenames)
    pages: List[PageImage] = []
    for index, filename in enumerate(manifest.page_filenames):
        _check_cancel(cancel, f"page {index + 1}/{total}")
        url = manifest.page_url(filename)
        try:
            r = client.get(url, binary=True)
        except requests.exceptions.RequestException as e:
            logger.warning(
                "Page %d/%d of chapter %s failed: %s",
                index + 1, total, manifest.chapter_id, e,
            )
            raise PageFetchFailed(index, e) from e
        pages.append(PageImage(index=index, data=r.content))
        logger.debug("  Fetched page %d/%d (%d bytes)", index + 1, total, len(r.content))
    return pages


# -----------------------------------------------------------
# Assembly
# -----------------------------------------------------------
def _decode(page: PageImage) -> Image.Image:
    try:
        im = Image.open(io.BytesIO(page.data))
        im.load()
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeFailed(page.index, e) from e
    return im.convert("RGBA")


def _render_sheet(im: Image.Image, layout: PageLayout) -> Image.Image:
    """Scales *im* into the fit box and centers it on a white page."""
    scale = layout.dpi / 72.0
    page_w, page_h = (max(1, round(v * scale)) for v in layout.page_size)
    box_w, box_h = (v * scale for v in layout.fit_box)
    margin = layout.margin * scale

    ratio = min(box_w / im.width, box_h / im.height)
    w = max(1, round(im.width * ratio))
    h = max(1, round(im.height * ratio))
    if (w, h) != im.size:
        im = im.resize((w, h), Image.LANCZOS)

    x = round(margin + (box_w - w) / 2)
    y = round(margin + (box_h - h) / 2)
    sheet = Image.new("RGB", (page_w, page_h), "white")
    sheet.paste(im, (x, y), im)
    return sheet


def assemble_pdf(
    images: Sequence[PageImage],
    *,
    layout: Optional[PageLayout] = None,
    title: Optional[str] = None,
) -> bytes:
    """
    Builds one PDF page per image, in the given order, entirely in memory.
    Each page is encoded on its own and appended to a pypdf writer so only
    one rendered sheet is held at a time.
    """
    if not images:
        raise ValueError("assemble_pdf needs at least one page image")
    layout = layout or PageLayout()

    writer = PdfWriter()
    for page in images:
        sheet = _render_sheet(_decode(page), layout)
        part = io.BytesIO()
        sheet.save(part, format="PDF", resolution=float(layout.dpi))
        sheet.close()
        part.seek(0)
        for pdf_page in PdfReader(part).pages:
            writer.add_page(pdf_page)

    metadata = {"/Producer": PRODUCER}
    if title:
        metadata["/Title"] = title
    writer.add_metadata(metadata)

    out = io.BytesIO()
    writer.write(out)
    writer.close()
    return out.getvalue()


# -----------------------------------------------------------
# Pipeline
# -----------------------------------------------------------
def build_chapter_pdf(
    chapter_id: str,
    handler: BaseSiteHandler,
    client: CatalogClient,
    *,
    title: Optional[str] = None,
    layout: Optional[PageLayout] = None,
    cancel: Optional[threading.Event] = None,
) -> bytes:
    """Resolves, fetches and assembles one chapter. Returns the PDF bytes."""
    manifest = handler.resolve_chapter(chapter_id, client)
    logger.info(
        "Chapter %s: %d pages on %s",
        chapter_id, len(manifest.page_filenames), manifest.server_base,
    )
    pages = retrieve_pages(manifest, client, cancel=cancel)
    _check_cancel(cancel, "assembly")
    pdf = assemble_pdf(pages, layout=layout, title=title)
    logger.info("Chapter %s: PDF ready (%d bytes)", chapter_id, len(pdf))
    return pdf


__all__ = [
    "PageImage",
    "PageLayout",
    "assemble_pdf",
    "build_chapter_pdf",
    "retrieve_pages",
]
