"""Handling of link submissions and info queries."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Union
from urllib.parse import parse_qsl, urlsplit

from markupsafe import Markup

from . import __version__, pages, tokens
from .models import FeedDraft, FeedEntry
from .pages import FetchResult, PageMetadata
from .store import FeedStore, PersistenceError

logger = logging.getLogger(__name__)

# The maximum size in bytes accepted in a POST body
MAX_POST_BODY = 1_048_576
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}

Fetcher = Callable[[str], FetchResult]


@dataclass(frozen=True)
class Reply:
    """HTTP response produced by a handler, independent of the web framework."""

    status: int
    body: Union[str, bytes] = ""
    media_type: str = "text/plain; charset=utf-8"
    headers: Dict[str, str] = field(default_factory=dict)


class RequestError(Exception):
    """A request was rejected; carries the status code and a short reason."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


def add_failure_reply(exc: RequestError) -> Reply:
    return Reply(exc.status, f"Failed: {exc.message}\n", headers=dict(CORS_HEADERS))


def info_reply(status: int, payload: Dict[str, str]) -> Reply:
    return Reply(
        status,
        json.dumps(payload),
        media_type="application/json",
        headers=dict(CORS_HEADERS),
    )


def check_content_type(content_type: Optional[str]) -> None:
    if not content_type:
        raise RequestError(400, "Missing Content-Type")
    media_type, _ = pages.parse_content_type(content_type)
    if media_type != FORM_CONTENT_TYPE:
        raise RequestError(415, "Unsupported media type")


def parse_form(body: bytes) -> Dict[str, str]:
    """Decode a form encoded body; later fields win over earlier ones.

    Clients commonly send non-ASCII text unescaped, so raw bytes are read as
    UTF-8 just like percent-escaped ones.
    """
    text = body.decode("utf-8", errors="replace")
    return dict(parse_qsl(text, keep_blank_values=True, errors="replace"))


def validate_url(value: Optional[str]) -> Optional[str]:
    """Return ``value`` if it is an absolute http(s) URL, otherwise None."""
    if not value:
        return None
    candidate = value.strip()
    if not candidate or any(ch.isspace() or ord(ch) < 32 for ch in candidate):
        return None
    try:
        parts = urlsplit(candidate)
        parts.port
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        return None
    return candidate


def build_draft(url: str, title: Optional[str], result: FetchResult) -> FeedDraft:
    """Combine the submission with whatever metadata the fetch produced."""
    page_title = page_description = None
    if isinstance(result, PageMetadata):
        page_title = result.title
        page_description = result.description

    parts = []
    if result.embed:
        parts.append(result.embed.html())
    if page_description:
        parts.append(Markup("<p>{}</p>").format(page_description))
    description = str(Markup("\n").join(parts)) if parts else None

    if title and title.strip():
        chosen = title
    else:
        chosen = page_title or url
    return FeedDraft(url=url, title=chosen, description=description)


class SubmissionHandler:
    """Authenticates submissions, enriches them and commits them to the feed."""

    def __init__(
        self,
        store: FeedStore,
        private_token: str,
        fetcher: Optional[Fetcher] = None,
    ):
        self._store = store
        self._private_token = private_token
        self._fetch = fetcher or pages.fetch

    def handle(
        self, body: bytes, remote_addr: str, content_type: Optional[str] = None
    ) -> Reply:
        """Process a ``POST /add`` request."""
        try:
            self._add(body, remote_addr, content_type)
        except RequestError as exc:
            return add_failure_reply(exc)
        return Reply(201, "Added\n", headers=dict(CORS_HEADERS))

    def info(
        self, body: bytes, remote_addr: str, content_type: Optional[str] = None
    ) -> Reply:
        """Process a ``POST /info`` request."""
        try:
            check_content_type(content_type)
            self._authenticate(parse_form(body), remote_addr)
        except RequestError as exc:
            return info_reply(exc.status, {"status": "error", "message": exc.message})
        return info_reply(200, {"status": "ok", "version": __version__})

    def _authenticate(self, fields: Dict[str, str], remote_addr: str) -> None:
        token = fields.get("token")
        if token is None:
            raise RequestError(400, "Missing token")
        if not tokens.verify(token, self._private_token):
            logger.warning("Rejected request with an invalid token from %s", remote_addr)
            raise RequestError(403, "Invalid token")

    def _add(
        self, body: bytes, remote_addr: str, content_type: Optional[str]
    ) -> FeedEntry:
        check_content_type(content_type)
        fields = parse_form(body)
        self._authenticate(fields, remote_addr)

        url = validate_url(fields.get("url"))
        if url is None:
            raise RequestError(400, "Invalid URL")

        result = self._fetch(url)
        if not isinstance(result, PageMetadata):
            logger.debug("No metadata available for %s; using fallbacks", url)

        draft = build_draft(url, fields.get("title"), result)
        try:
            return self._store.append(draft)
        except PersistenceError as exc:
            logger.error("Unable to add %s: %s", url, exc)
            raise RequestError(500, "Error saving feed file") from exc
