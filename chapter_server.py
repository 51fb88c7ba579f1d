#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ------------------------------------------------------------------
# Comic catalog proxy + chapter → PDF download server
# -----------------------------------------------------------
import argparse
import asyncio
import logging
import os
import re
import threading
from contextlib import asynccontextmanager, contextmanager
from functools import partial
from typing import Optional
from urllib.parse import quote

from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from chapter_pdf import PageLayout, build_chapter_pdf
from settings import Settings, get_settings
from sites import CatalogClient, RateGate, get_handler_by_name
from sites.base import BaseSiteHandler
from sites.errors import DownloadError, MissingParameter, UpstreamUnreachable

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

# How often a running download checks whether its caller is still there.
DISCONNECT_POLL_SECONDS = 0.5


class DownloadRequest(BaseModel):
    mangaId: Optional[str] = None
    chapterId: Optional[str] = None
    mangaTitle: Optional[str] = None


# -----------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------
def sanitize_filename(name: str) -> str:
    return re.sub(r'[\\/*?:"<>|\r\n]', "", name).replace(" ", "_")


def content_disposition(filename: str) -> str:
    """attachment header with an ASCII fallback and an RFC 5987 UTF-8 name."""
    try:
        filename.encode("latin-1")
        return f'attachment; filename="{filename}"'
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", "ignore").decode("ascii") or "chapter.pdf"
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def download_filename(body: DownloadRequest) -> str:
    display = body.mangaTitle or body.mangaId or "chapter"
    return f"{sanitize_filename(display)}_{sanitize_filename(body.chapterId)}.pdf"


@contextmanager
def upstream_errors(message: str):
    """Maps anything that is not already a DownloadError to a 500 with *message*."""
    try:
        yield
    except DownloadError:
        raise
    except Exception as e:  # noqa: BLE001
        logger.exception("%s", message)
        raise UpstreamUnreachable(str(e), error=message) from e


async def _run_until_done(request: Request, cancel: threading.Event, func):
    """Runs the zero-argument *func* on the thread pool; sets *cancel* if the caller disconnects."""
    job = asyncio.ensure_future(run_in_threadpool(func))
    while True:
        done, _ = await asyncio.wait({job}, timeout=DISCONNECT_POLL_SECONDS)
        if done:
            return job.result()
        if not cancel.is_set() and await request.is_disconnected():
            logger.warning("Client disconnected, cancelling download")
            cancel.set()


# -----------------------------------------------------------
# App factory
# -----------------------------------------------------------
def create_app(
    settings: Optional[Settings] = None,
    *,
    client: Optional[CatalogClient] = None,
    handler: Optional[BaseSiteHandler] = None,
) -> FastAPI:
    settings = settings or get_settings()
    handler = handler or get_handler_by_name(settings.catalog_site)
    if handler is None:
        raise ValueError(f"Unknown catalog site: {settings.catalog_site}")

    owns_client = client is None
    if client is None:
        client = CatalogClient(
            RateGate(settings.rate_interval),
            bearer_token=settings.api_key,
            timeout=settings.request_timeout,
        )
    handler.configure_session(client)
    layout = PageLayout(dpi=settings.pdf_dpi)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        os.makedirs(settings.download_dir, exist_ok=True)
        logger.info("Catalog: %s (one request per %.2fs)", handler.name, client.gate.interval)
        if settings.api_key:
            logger.info("API key is set")
        else:
            logger.warning("No API key found, public access only")
        yield
        if owns_client:
            client.close()

    app = FastAPI(
        title="Chapter PDF Server",
        description="Search a comic catalog and download chapters as PDF",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.client = client
    app.state.handler = handler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    @app.exception_handler(DownloadError)
    async def download_error_handler(request: Request, exc: DownloadError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": str(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "details": str(exc)},
        )

    @app.get("/")
    def root():
        return {
            "service": "chapter-pdf-server",
            "version": __version__,
            "catalog": handler.name,
        }

    @app.get("/api/search")
    def search(q: Optional[str] = None):
        if not q or not q.strip():
            raise MissingParameter("q", 'Query parameter "q" is required')
        with upstream_errors("Failed to search manga"):
            results = handler.search(q.strip(), client)
        return [r.to_dict() for r in results]

    @app.get("/api/manga/{manga_id}/chapters")
    def chapters(manga_id: str):
        with upstream_errors("Failed to get chapters"):
            summaries = handler.list_chapters(manga_id, client)
        return [c.to_dict() for c in summaries]

    @app.get("/api/reader/{chapter_id}")
    def reader(chapter_id: str):
        with upstream_errors("Failed to fetch reader images"):
            images = handler.reader_images(chapter_id, client)
        return {"images": images}

    @app.post("/api/download")
    async def download(request: Request, body: Optional[DownloadRequest] = Body(default=None)):
        body = body or DownloadRequest()
        if not body.chapterId:
            raise MissingParameter("chapterId")
        logger.info("Download requested: manga=%s chapter=%s", body.mangaId, body.chapterId)

        cancel = threading.Event()
        with upstream_errors("Download failed"):
            pdf = await _run_until_done(
                request,
                cancel,
                partial(
                    build_chapter_pdf,
                    body.chapterId,
                    handler,
                    client,
                    title=body.mangaTitle,
                    layout=layout,
                    cancel=cancel,
                ),
            )
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={"Content-Disposition": content_disposition(download_filename(body))},
        )

    return app


# -----------------------------------------------------------
# main
# -----------------------------------------------------------
def main(argv=None):
    p = argparse.ArgumentParser("chapter pdf server")
    p.add_argument("--host", default=None, help="Bind address (default: SERVER_HOST or 0.0.0.0).")
    p.add_argument("--port", type=int, default=None, help="Port (default: SERVER_PORT or 8080).")
    p.add_argument("--verbose", action="store_true", help="Log requests and downloads.")
    p.add_argument("--debug", action="store_true", help="Also log every outbound call.")
    args = p.parse_args(argv)

    level = logging.WARNING
    if args.verbose:
        level = logging.INFO
    if args.debug:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=args.host or settings.server_host,
        port=args.port or settings.server_port,
    )


if __name__ == "__main__":
    main()
