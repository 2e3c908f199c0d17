"""Atom serialization of the link feed."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from xml.etree import ElementTree as ET

from . import HOMEPAGE, __version__
from .models import MAX_ENTRIES, FeedDocument, FeedEntry
from .templating import get_environment

logger = logging.getLogger(__name__)

ATOM_NS = "http://www.w3.org/2005/Atom"
ATOM_CONTENT_TYPE = "application/atom+xml"
DEFAULT_TITLE = "linkdrop"

_NS = {"atom": ATOM_NS}


class FeedError(RuntimeError):
    """Base class for feed storage problems."""


class FeedFormatError(FeedError):
    """The feed file exists but is not a readable Atom feed."""


def new_id() -> str:
    return f"urn:uuid:{uuid.uuid4()}"


def new_document(title: str = DEFAULT_TITLE) -> FeedDocument:
    """Return an empty feed document."""
    return FeedDocument(
        id=new_id(), title=title, updated=datetime.now(timezone.utc), entries=()
    )


def render_feed(document: FeedDocument) -> bytes:
    """Serialize ``document`` as a complete Atom document."""
    template = get_environment().get_template("feed.atom.j2")
    text = template.render(feed=document, version=__version__, homepage=HOMEPAGE)
    return text.encode("utf-8")


def _parse_timestamp(value: Optional[str], what: str) -> datetime:
    if not value or not value.strip():
        raise FeedFormatError(f"{what} is missing a timestamp")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise FeedFormatError(f"{what} has an invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _entry_link(element: ET.Element) -> Optional[str]:
    fallback = None
    for link in element.findall("atom:link", _NS):
        href = link.get("href")
        if not href:
            continue
        if link.get("rel", "alternate") == "alternate":
            return href
        fallback = fallback or href
    return fallback


def _parse_entry(element: ET.Element, position: int) -> FeedEntry:
    what = f"entry {position}"
    entry_id = (element.findtext("atom:id", None, _NS) or "").strip()
    if not entry_id:
        raise FeedFormatError(f"{what} has no id")

    url = _entry_link(element)
    if not url:
        raise FeedFormatError(f"{what} has no link")

    published = element.findtext("atom:published", None, _NS) or element.findtext(
        "atom:updated", None, _NS
    )
    content = element.findtext("atom:content", None, _NS)
    if not content:
        content = element.findtext("atom:summary", None, _NS)

    return FeedEntry(
        id=entry_id,
        url=url,
        title=(element.findtext("atom:title", None, _NS) or "").strip() or url,
        published_at=_parse_timestamp(published, what),
        description=content or None,
    )


def parse_feed(data: bytes) -> FeedDocument:
    """Parse an Atom document, raising ``FeedFormatError`` if it is unusable."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise FeedFormatError(f"feed is not well-formed XML: {exc}") from exc

    if root.tag != f"{{{ATOM_NS}}}feed":
        raise FeedFormatError(f"expected an Atom <feed> root element, found {root.tag}")

    feed_id = (root.findtext("atom:id", None, _NS) or "").strip()
    if not feed_id:
        raise FeedFormatError("feed has no id")

    entries: List[FeedEntry] = [
        _parse_entry(element, position)
        for position, element in enumerate(root.findall("atom:entry", _NS), start=1)
    ]
    if len(entries) > MAX_ENTRIES:
        logger.warning(
            "Feed holds %d entries; keeping the newest %d", len(entries), MAX_ENTRIES
        )
        entries = entries[:MAX_ENTRIES]

    return FeedDocument(
        id=feed_id,
        title=(root.findtext("atom:title", None, _NS) or "").strip() or DEFAULT_TITLE,
        updated=_parse_timestamp(root.findtext("atom:updated", None, _NS), "feed"),
        entries=tuple(entries),
    )
