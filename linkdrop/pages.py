"""Web page retrieval and metadata extraction."""

from __future__ import annotations

import codecs
import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple, Union
from urllib.parse import urljoin

import requests
import urllib3
from lxml import etree

from . import HOMEPAGE, __version__
from .embeds import VideoEmbed, recognize

logger = logging.getLogger(__name__)

USER_AGENT = f"linkdrop/{__version__} (+{HOMEPAGE})"
CONNECT_TIMEOUT = 10.0
DEFAULT_TIMEOUT = 30.0
MAX_BODY_BYTES = 1_048_576
MAX_REDIRECTS = 10
CHUNK_SIZE = 8 * 1024

HTML_TYPES = {"text/html", "application/xhtml+xml"}


@dataclass(frozen=True)
class PageMetadata:
    """Metadata extracted from a fetched page."""

    title: Optional[str] = None
    description: Optional[str] = None
    embed: Optional[VideoEmbed] = None


@dataclass(frozen=True)
class FetchFailure:
    """The page could not be fetched or was not something we can read."""

    reason: str
    embed: Optional[VideoEmbed] = None


FetchResult = Union[PageMetadata, FetchFailure]


def _collapse(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    collapsed = " ".join(value.split())
    return collapsed or None


def _longer(current: Optional[str], candidate: Optional[str]) -> Optional[str]:
    if candidate and (current is None or len(candidate) > len(current)):
        return candidate
    return current


class HeadScanner:
    """Incrementally scan an HTML document for its title and description.

    Bytes are pushed through ``feed`` as they arrive. Scanning is finished
    once the ``<head>`` closes or the ``<body>`` starts, so the rest of the
    document is never read.
    """

    def __init__(self, encoding: Optional[str] = None):
        self._parser = etree.HTMLPullParser(
            events=("start", "end"), encoding=encoding, no_network=True
        )
        self._title: Optional[str] = None
        self._og_title: Optional[str] = None
        self.description: Optional[str] = None
        self.done = False

    @property
    def title(self) -> Optional[str]:
        return self._title or self._og_title

    def feed(self, data: bytes) -> bool:
        """Consume a chunk and return True when nothing more is needed."""
        if self.done:
            return True
        try:
            self._parser.feed(data)
        except etree.LxmlError as exc:
            logger.debug("HTML parser gave up: %s", exc)
            self._drain()
            self.done = True
        else:
            self._drain()
        return self.done

    def close(self) -> None:
        if self.done:
            return
        try:
            self._parser.close()
        except etree.LxmlError as exc:
            logger.debug("HTML parser could not finish document: %s", exc)
        self._drain()
        self.done = True

    def _drain(self) -> None:
        for event, element in self._parser.read_events():
            tag = element.tag
            if not isinstance(tag, str):
                continue
            tag = tag.lower()

            if event == "start" and tag == "meta":
                self._meta(element)
            elif event == "end" and tag == "title" and self._title is None:
                self._title = _collapse("".join(element.itertext()))
            elif (event == "end" and tag == "head") or (event == "start" and tag == "body"):
                self.done = True
                break

    def _meta(self, element) -> None:
        content = _collapse(element.get("content"))
        if not content:
            return
        prop = (element.get("property") or "").lower()
        name = (element.get("name") or "").lower()
        if prop == "og:title":
            self._og_title = _longer(self._og_title, content)
        elif prop == "og:description" or name == "description":
            self.description = _longer(self.description, content)


def parse_content_type(header: Optional[str]) -> Tuple[str, Optional[str]]:
    """Split a Content-Type header into its media type and charset."""
    if not header:
        return "", None
    media_type, *params = header.split(";")
    charset = None
    for param in params:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset":
            charset = value.strip().strip('"') or None
    if charset:
        try:
            codecs.lookup(charset)
        except LookupError:
            logger.debug("Ignoring unknown charset %r", charset)
            charset = None
    return media_type.strip().lower(), charset


def _new_session() -> requests.Session:
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    session.headers["Accept"] = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5"
    return session


def _request_timeouts(deadline: float) -> Tuple[float, float]:
    """Connect and read timeouts for the next request, capped by ``deadline``."""
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise requests.Timeout("deadline reached before the response arrived")
    return min(CONNECT_TIMEOUT, remaining), remaining


def _limit_socket_wait(raw, seconds: float) -> None:
    # A single recv may not outlast the overall deadline.
    sock = getattr(getattr(raw, "connection", None), "sock", None)
    if sock is not None:
        sock.settimeout(seconds)


def _read_response(
    response, embed: Optional[VideoEmbed], deadline: float, max_bytes: int
) -> FetchResult:
    status = response.status_code
    if not 200 <= status < 300:
        return FetchFailure(
            f"HTTP request was unsuccessful: {response.reason} ({status})", embed
        )

    media_type, charset = parse_content_type(response.headers.get("Content-Type"))
    if media_type not in HTML_TYPES:
        if media_type.startswith("text/"):
            logger.debug("No metadata to extract from %s content", media_type)
            return PageMetadata(embed=embed)
        return FetchFailure(
            f"unsupported content type {media_type or 'unknown'}", embed
        )

    scanner = HeadScanner(charset)
    received = 0
    raw = response.raw
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return FetchFailure("timed out reading response body", embed)
        _limit_socket_wait(raw, remaining)
        # read1 returns whatever has arrived, so a trickling server cannot
        # keep us waiting for a full chunk.
        chunk = raw.read1(CHUNK_SIZE, decode_content=True)
        if not chunk:
            scanner.close()
            break
        received += len(chunk)
        if received > max_bytes:
            return FetchFailure(f"response exceeded {max_bytes} bytes", embed)
        if scanner.feed(chunk):
            break

    logger.debug("Scanned %d bytes of HTML", received)
    return PageMetadata(scanner.title, scanner.description, embed)


def _follow_redirects(
    session: requests.Session, url: str, deadline: float, max_redirects: int
) -> requests.Response:
    """GET ``url``, following redirects by hand so every hop shares the deadline."""
    target = url
    for _ in range(max_redirects + 1):
        response = session.get(
            target,
            timeout=_request_timeouts(deadline),
            stream=True,
            allow_redirects=False,
        )
        location = session.get_redirect_target(response)
        if not location:
            return response
        response.close()
        target = urljoin(response.url, location)
        logger.debug("Following redirect to %s", target)
    raise requests.TooManyRedirects(f"Exceeded {max_redirects} redirects.")


def fetch(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    max_bytes: int = MAX_BODY_BYTES,
    max_redirects: int = MAX_REDIRECTS,
) -> FetchResult:
    """Fetch ``url`` and return its title, description and video embed.

    The whole exchange, redirects and body included, is abandoned once
    ``timeout`` seconds have passed.
    """
    embed = recognize(url)
    deadline = time.monotonic() + timeout
    logger.debug("Fetching metadata for %s", url)

    session = _new_session()
    try:
        response = _follow_redirects(session, url, deadline, max_redirects)
        try:
            if time.monotonic() > deadline:
                raise requests.Timeout("deadline reached while reading headers")
            result = _read_response(response, embed, deadline, max_bytes)
        finally:
            response.close()
    except requests.TooManyRedirects:
        result = FetchFailure(f"more than {max_redirects} redirects", embed)
    except (requests.Timeout, urllib3.exceptions.TimeoutError):
        result = FetchFailure(f"timed out after {timeout:g} seconds", embed)
    except (requests.RequestException, urllib3.exceptions.HTTPError) as exc:
        result = FetchFailure(f"HTTP error: {exc}", embed)
    finally:
        session.close()

    if isinstance(result, FetchFailure):
        logger.info("Failed to fetch %s: %s", url, result.reason)
    return result
