"""
Submission file proxy.

Relays a Moodle file to the browser without exposing the web service
token. Range requests are forwarded so PDF viewers and media players can
seek, and previewable types are served inline.
"""

import re
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from urllib.parse import quote, unquote

import httpx

from ..config.models import MoodleSettings
from ..utils.logging import get_logger

logger = get_logger(__name__)

SUCCESS_STATUSES = (200, 206)
DEFAULT_CONTENT_TYPE = "application/octet-stream"
CACHE_CONTROL = "private, max-age=3600"

PREVIEWABLE_TYPES = {"application/pdf", "application/json"}
PREVIEWABLE_PREFIXES = ("text/", "image/")

_FILENAME_EXTENDED = re.compile(r"filename\*\s*=\s*([\w-]*)'[^']*'([^;\s]+)", re.IGNORECASE)
_FILENAME_PLAIN = re.compile(r'filename\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^;\s]+))', re.IGNORECASE)


class FileProxyError(Exception):
    """The file could not be relayed; `status_code` is the HTTP status to answer with."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def is_previewable(content_type: str | None) -> bool:
    """Check whether a browser can display this content type inline."""
    if not content_type:
        return False
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime in PREVIEWABLE_TYPES or mime.startswith(PREVIEWABLE_PREFIXES)


def parse_disposition_filename(disposition: str | None) -> str | None:
    """
    Recover the filename from a Content-Disposition header.

    The RFC 5987 form (filename*=UTF-8''name%20here) wins over the plain
    form and is percent-decoded.
    """
    if not disposition:
        return None

    extended = _FILENAME_EXTENDED.search(disposition)
    if extended:
        charset = extended.group(1) or "utf-8"
        try:
            return unquote(extended.group(2), encoding=charset, errors="strict")
        except (LookupError, UnicodeDecodeError):
            return unquote(extended.group(2))

    plain = _FILENAME_PLAIN.search(disposition)
    if plain:
        if plain.group(1) is not None:
            return re.sub(r"\\(.)", r"\1", plain.group(1))
        return plain.group(2)

    return None


def inline_disposition(filename: str | None) -> str:
    """Build an inline Content-Disposition, keeping the filename when known."""
    if not filename:
        return "inline"
    if filename.isascii() and filename.isprintable() and '"' not in filename and "\\" not in filename:
        return f'inline; filename="{filename}"'
    # Header values must stay latin-1; non-ASCII names go percent-encoded
    return f"inline; filename*=UTF-8''{quote(filename, safe='')}"


def build_proxy_headers(upstream_headers: Mapping[str, str]) -> dict[str, str]:
    """
    Derive the client response headers from the upstream ones.

    Args:
        upstream_headers: Headers of the Moodle response

    Returns:
        Headers to send to the client
    """
    upstream = httpx.Headers(upstream_headers)
    content_type = upstream.get("content-type") or DEFAULT_CONTENT_TYPE
    disposition = upstream.get("content-disposition")

    headers = {
        "Content-Type": content_type,
        "Accept-Ranges": upstream.get("accept-ranges") or "bytes",
        "Cache-Control": CACHE_CONTROL,
    }

    if is_previewable(content_type):
        headers["Content-Disposition"] = inline_disposition(parse_disposition_filename(disposition))
    elif disposition:
        headers["Content-Disposition"] = disposition

    for name in ("Content-Range", "Content-Length"):
        value = upstream.get(name)
        if value:
            headers[name] = value

    return headers


@dataclass
class ProxiedFile:
    """An open upstream response ready to be streamed to the client."""

    status_code: int
    headers: dict[str, str]
    response: httpx.Response

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield the upstream body chunk by chunk, closing it at the end."""
        try:
            async for chunk in self.response.aiter_raw():
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        await self.response.aclose()


class FileProxy:
    """Opens Moodle file URLs with the web service token attached."""

    def __init__(
        self,
        settings: MoodleSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.timeout,
                verify=self.settings.verify_ssl,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "FileProxy":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    def build_upstream_url(self, file_url: str) -> httpx.URL:
        """
        Attach the token to a Moodle file URL.

        Raises:
            FileProxyError: If the proxy is not configured or the URL does
                not point at the configured Moodle site
        """
        if not self.settings.is_complete:
            raise FileProxyError("Moodle configuration is incomplete.", 500)

        try:
            url = httpx.URL(file_url)
            moodle = httpx.URL(self.settings.base_url)
        except (httpx.InvalidURL, TypeError) as e:
            raise FileProxyError("The url parameter is not a valid URL.", 400) from e

        if url.scheme not in ("http", "https") or not url.host:
            raise FileProxyError("The url parameter is not a valid URL.", 400)

        # The token must never be sent to another host
        if (url.scheme, url.host, url.port) != (moodle.scheme, moodle.host, moodle.port):
            raise FileProxyError("The url parameter must point to the Moodle site.", 400)

        return url.copy_set_param("token", self.settings.token)

    async def open(self, file_url: str, range_header: str | None = None) -> ProxiedFile:
        """
        Open an upstream file for streaming.

        Args:
            file_url: Moodle file URL (without token)
            range_header: The client's Range header, forwarded verbatim

        Returns:
            ProxiedFile; the caller must consume or close it

        Raises:
            FileProxyError: On configuration, URL, network or upstream errors
        """
        url = self.build_upstream_url(file_url)

        request_headers = {"Accept": "*/*", "Accept-Encoding": "identity"}
        if range_header:
            request_headers["Range"] = range_header

        request = self.client.build_request("GET", url, headers=request_headers)

        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout fetching file from {url.host}{url.path}")
            raise FileProxyError("Timed out retrieving the file.", 504) from e
        except httpx.RequestError as e:
            logger.error(f"Request error fetching file from {url.host}{url.path}: {e!r}")
            raise FileProxyError("Could not reach Moodle to retrieve the file.", 502) from e

        if response.status_code not in SUCCESS_STATUSES:
            await response.aclose()
            logger.error(f"Moodle returned {response.status_code} for {url.path}")
            raise FileProxyError(
                f"Could not retrieve the file ({response.status_code}).",
                response.status_code,
            )

        return ProxiedFile(
            status_code=response.status_code,
            headers=build_proxy_headers(response.headers),
            response=response,
        )


async def proxy_file(
    proxy: FileProxy,
    file_url: str,
    range_header: str | None = None,
) -> ProxiedFile:
    """Open `file_url` through `proxy`, forwarding an optional Range header."""
    return await proxy.open(file_url, range_header)
