# download-link-service/downloads.py
"""
Serving of tracking links.

``serve_download`` checks the link's lifecycle, records the download in the
background and proxies the upstream file. Landing pages from supported hosts
are resolved to the real file through ``extractors``.

Counter and deactivation writes are fire-and-forget: two requests racing near
the quota can both be admitted before either increment lands.

Once the response headers are sent, an upstream read error can no longer become
a JSON error. The streaming body logs it and re-raises so the ASGI server drops
the connection and the client sees a truncated download. The server also logs
the traceback for that request.
"""
import asyncio
import logging
import re
from typing import Optional, Set
from urllib.parse import quote, unquote, urlsplit

import httpx
from fastapi import Request, status
from fastapi.responses import RedirectResponse, Response, StreamingResponse

import database
from classifier import ResourceKind, classify
from exceptions import (
    DownloadLimitReachedError,
    LinkExpiredError,
    LinkInactiveError,
    LinkNotFoundError,
    StoreError,
    UpstreamFetchError,
    UpstreamTimeoutError,
)
from extractors import ExtractedDownload, extract_download
from models import Link

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "download"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
UPSTREAM_SCHEMES = ("http", "https")

DISPOSITION_FILENAME = re.compile(r"""\bfilename\s*=\s*((['"]).*?\2|[^;\n]*)""", re.I)
DISPOSITION_FILENAME_EXT = re.compile(r"filename\*\s*=\s*([^;\n]+)", re.I)

_pending_bookkeeping: Set[asyncio.Task] = set()


def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    Dependency that provides the shared upstream HTTP client.
    """
    return request.app.state.http_client


# --- Filenames ---


def fallback_filename(url: str) -> str:
    path = urlsplit(url).path
    return unquote(path.rsplit("/", 1)[-1]) or DEFAULT_FILENAME


def filename_from_disposition(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    extended = DISPOSITION_FILENAME_EXT.search(header)
    if extended:
        charset, _, encoded = extended.group(1).strip().strip('"').partition("''")
        if encoded:
            try:
                return unquote(encoded, encoding=charset or "utf-8")
            except LookupError:
                return unquote(encoded)
        # An empty extended value leaves only a plain filename= to look at.
    match = DISPOSITION_FILENAME.search(header)
    if match and match.group(1):
        name = match.group(1).replace('"', "").replace("'", "").strip()
        return name or None
    return None


def content_disposition(filename: str) -> str:
    filename = re.sub(r'["\r\n]', "", filename)
    try:
        filename.encode("latin-1")
    except UnicodeEncodeError:
        return f"attachment; filename*=utf-8''{quote(filename)}"
    return f'attachment; filename="{filename}"'


# --- Lifecycle and bookkeeping ---


async def _deactivate_quietly(link: Link, reason: str) -> None:
    try:
        await database.deactivate_link(link.id)
        logger.info("Deactivated link %s: %s", link.id, reason)
    except StoreError:
        logger.exception("Error deactivating link %s", link.id)


async def enforce_lifecycle(link: Link) -> None:
    """Raises the matching rejection when ``link`` may not be downloaded now."""
    if not link.is_active:
        # Name the reason when the link was switched off by its own rules.
        if link.is_expired():
            raise LinkExpiredError()
        if link.is_limit_reached():
            raise DownloadLimitReachedError()
        raise LinkInactiveError()
    if link.is_expired():
        await _deactivate_quietly(link, "expired")
        raise LinkExpiredError()
    if link.is_limit_reached():
        await _deactivate_quietly(link, "download limit reached")
        raise DownloadLimitReachedError()


async def record_download(link: Link) -> None:
    try:
        count = await database.increment_download_count(link.id)
        if (
            count is not None
            and link.max_downloads is not None
            and count >= link.max_downloads
        ):
            await database.deactivate_link(link.id)
            logger.info("Link %s reached its download limit", link.id)
    except StoreError:
        logger.exception("Error updating download count for link %s", link.id)


def schedule_bookkeeping(link: Link) -> asyncio.Task:
    task = asyncio.create_task(record_download(link))
    _pending_bookkeeping.add(task)
    task.add_done_callback(_pending_bookkeeping.discard)
    return task


async def wait_for_bookkeeping() -> None:
    """Waits for counter updates still in flight, e.g. on shutdown."""
    if _pending_bookkeeping:
        await asyncio.gather(*list(_pending_bookkeeping))


# --- Upstream ---


async def open_upstream(
    client: httpx.AsyncClient, url: str, follow_redirects: bool
) -> httpx.Response:
    if urlsplit(url).scheme.lower() not in UPSTREAM_SCHEMES:
        logger.error("Refusing to fetch %s: unsupported scheme", url)
        raise UpstreamFetchError()
    try:
        request = client.build_request("GET", url)
        return await client.send(request, stream=True, follow_redirects=follow_redirects)
    except httpx.TimeoutException as exc:
        logger.error("Timed out fetching %s: %s", url, exc)
        raise UpstreamTimeoutError() from exc
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.error("Error fetching %s: %s", url, exc)
        raise UpstreamFetchError() from exc


async def read_upstream(upstream: httpx.Response) -> str:
    try:
        await upstream.aread()
    except httpx.TimeoutException as exc:
        logger.error("Timed out reading %s: %s", upstream.url, exc)
        raise UpstreamTimeoutError() from exc
    except httpx.HTTPError as exc:
        logger.error("Error reading %s: %s", upstream.url, exc)
        raise UpstreamFetchError() from exc
    finally:
        await upstream.aclose()
    return upstream.text


def stream_upstream(upstream: httpx.Response, filename: str) -> StreamingResponse:
    headers = {"Content-Disposition": content_disposition(filename)}
    # The body is re-encoded as identity, so a compressed length would be wrong.
    encoded = upstream.headers.get("content-encoding", "identity") != "identity"
    if "content-length" in upstream.headers and not encoded:
        headers["Content-Length"] = upstream.headers["content-length"]

    async def body():
        try:
            async for chunk in upstream.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            # Headers are already on the wire; all we can do is cut the body.
            logger.warning("Aborted stream from %s: %s", upstream.url, exc)
            raise
        finally:
            await upstream.aclose()

    return StreamingResponse(
        body(),
        media_type=upstream.headers.get("content-type", DEFAULT_CONTENT_TYPE),
        headers=headers,
    )


async def proxy_extracted(
    client: httpx.AsyncClient, extracted: ExtractedDownload, fallback: str
) -> Response:
    upstream = await open_upstream(
        client, extracted.download_link, follow_redirects=False
    )
    if upstream.is_redirect:
        # Hand the redirect to the client instead of chasing the chain here.
        location = str(upstream.url.join(upstream.headers["location"]))
        await upstream.aclose()
        return RedirectResponse(location, status_code=status.HTTP_302_FOUND)
    if upstream.status_code != status.HTTP_200_OK:
        await upstream.aclose()
        logger.error(
            "Extracted link %s answered %s", extracted.download_link, upstream.status_code
        )
        raise UpstreamFetchError(f"Failed to fetch file: {upstream.status_code}")
    return stream_upstream(upstream, extracted.filename or fallback)


async def serve_download(link_id: str, client: httpx.AsyncClient) -> Response:
    link = await database.get_link(link_id)
    if link is None:
        raise LinkNotFoundError()
    await enforce_lifecycle(link)

    schedule_bookkeeping(link)

    fallback = fallback_filename(link.original_url)
    # Redirects are followed here; only the extracted link's 3xx goes to the client.
    upstream = await open_upstream(client, link.original_url, follow_redirects=True)

    if classify(upstream.headers) is ResourceKind.BINARY:
        filename = filename_from_disposition(
            upstream.headers.get("content-disposition")
        )
        return stream_upstream(upstream, filename or fallback)

    html = await read_upstream(upstream)
    extracted = extract_download(html, link.original_url)
    if extracted is not None:
        logger.info("Resolved landing page for link %s", link.id)
        return await proxy_extracted(client, extracted, fallback)

    return Response(
        content=html,
        media_type="text/html",
        headers={"Content-Disposition": content_disposition(f"{fallback}.html")},
    )
