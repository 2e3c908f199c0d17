from datetime import datetime, timezone
from xml.etree import ElementTree as ET

import feedparser
import pytest

from linkdrop.feeds import FeedFormatError, new_document, parse_feed, render_feed
from linkdrop.models import MAX_ENTRIES, FeedDocument, FeedEntry

WHEN = datetime(2024, 5, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)


def _entry(index, **overrides):
    values = dict(
        id=f"urn:uuid:00000000-0000-0000-0000-{index:012d}",
        url=f"https://example.com/{index}",
        title=f"Entry {index}",
        published_at=WHEN,
    )
    values.update(overrides)
    return FeedEntry(**values)


def test_render_feed_is_a_valid_atom_document():
    document = FeedDocument(
        id="urn:uuid:feed",
        title="linkdrop",
        updated=WHEN,
        entries=(
            _entry(2, title="Fish & Chips", description="<p>Crispy</p>"),
            _entry(1),
        ),
    )

    data = render_feed(document)
    parsed = feedparser.parse(data)

    assert not parsed.bozo
    assert parsed.version == "atom10"
    assert [entry.link for entry in parsed.entries] == [
        "https://example.com/2",
        "https://example.com/1",
    ]
    assert parsed.entries[0].title == "Fish & Chips"
    assert parsed.entries[0].content[0].value == "<p>Crispy</p>"


def test_render_feed_strips_characters_xml_cannot_hold():
    document = FeedDocument(
        id="urn:uuid:feed",
        title="linkdrop",
        updated=WHEN,
        entries=(_entry(1, title="Bell\x07 and null\x00"),),
    )

    root = ET.fromstring(render_feed(document))

    title = root.find("{http://www.w3.org/2005/Atom}entry/{http://www.w3.org/2005/Atom}title")
    assert title.text == "Bell and null"


def test_parse_feed_round_trips_rendered_document():
    document = FeedDocument(
        id="urn:uuid:feed",
        title="My links",
        updated=WHEN,
        entries=(_entry(2, description="<iframe src=\"x\"></iframe>"), _entry(1)),
    )

    assert parse_feed(render_feed(document)) == document


def test_parse_feed_truncates_to_newest_entries():
    entries = tuple(_entry(i) for i in range(MAX_ENTRIES + 5, 0, -1))
    document = FeedDocument(id="urn:uuid:feed", title="t", updated=WHEN, entries=entries)

    parsed = parse_feed(render_feed(document))

    assert len(parsed.entries) == MAX_ENTRIES
    assert parsed.entries[0].url == f"https://example.com/{MAX_ENTRIES + 5}"


def test_new_document_is_empty_and_renderable():
    document = new_document()

    assert document.entries == ()
    assert document.id.startswith("urn:uuid:")
    assert parse_feed(render_feed(document)).id == document.id


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"<feed xmlns='http://www.w3.org/2005/Atom'><id>x</id>",
        b"<rss version='2.0'><channel></channel></rss>",
        b"<feed xmlns='http://www.w3.org/2005/Atom'><updated>2024-01-01T00:00:00Z</updated></feed>",
        b"<feed xmlns='http://www.w3.org/2005/Atom'><id>x</id><updated>yesterday</updated></feed>",
    ],
)
def test_parse_feed_rejects_unusable_documents(data):
    with pytest.raises(FeedFormatError):
        parse_feed(data)
