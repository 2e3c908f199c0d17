"""Jinja2 environment for linkdrop templates."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from functools import lru_cache

from jinja2 import Environment, PackageLoader, select_autoescape

# Characters that may not appear anywhere in an XML 1.0 document.
_XML_INVALID = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def _rfc3339(value: datetime) -> str:
    """Format a datetime the way Atom expects it."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="microseconds")
        .replace("+00:00", "Z")
    )


def _xml_text(value: str | None) -> str:
    """Drop characters that would make the document ill-formed."""
    if not value:
        return ""
    return _XML_INVALID.sub("", str(value))


@lru_cache(maxsize=None)
def get_environment() -> Environment:
    """Jinja environment shared by the Atom feed and the HTML pages."""
    env = Environment(
        loader=PackageLoader(__package__, "templates"),
        autoescape=select_autoescape(["html", "xml", "j2"]),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters.update(rfc3339=_rfc3339, xml_text=_xml_text)
    return env
