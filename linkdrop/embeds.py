"""Recognition of links to known video hosts."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from markupsafe import Markup, escape

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtube-nocookie.com",
    "www.youtube-nocookie.com",
}
YOUTUBE_SHORT_HOSTS = {"youtu.be", "www.youtu.be"}
VIMEO_HOSTS = {"vimeo.com", "www.vimeo.com"}
VIMEO_PLAYER_HOSTS = {"player.vimeo.com"}

_YOUTUBE_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
_VIMEO_ID = re.compile(r"^[0-9]+$")
_YOUTUBE_PATH_PREFIXES = ("shorts", "embed", "live", "v")


@dataclass(frozen=True)
class VideoEmbed:
    """Reference to an embeddable player for a recognised video."""

    provider: str
    video_id: str
    player_url: str

    def html(self) -> Markup:
        """Render the player as an iframe fragment."""
        return Markup(
            '<iframe src="{}" width="560" height="315" frameborder="0" '
            'allow="encrypted-media; picture-in-picture" allowfullscreen></iframe>'
        ).format(escape(self.player_url))


def _youtube(video_id: str) -> Optional[VideoEmbed]:
    if not _YOUTUBE_ID.match(video_id):
        return None
    return VideoEmbed(
        provider="youtube",
        video_id=video_id,
        player_url=f"https://www.youtube-nocookie.com/embed/{video_id}",
    )


def _vimeo(video_id: str) -> Optional[VideoEmbed]:
    if not _VIMEO_ID.match(video_id):
        return None
    return VideoEmbed(
        provider="vimeo",
        video_id=video_id,
        player_url=f"https://player.vimeo.com/video/{video_id}",
    )


def recognize(url: str) -> Optional[VideoEmbed]:
    """Return an embed for ``url`` if it points at a known video host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return None

    host = (parts.hostname or "").lower()
    segments = [segment for segment in parts.path.split("/") if segment]

    embed: Optional[VideoEmbed] = None
    if host in YOUTUBE_HOSTS:
        if segments[:1] == ["watch"]:
            video_ids = parse_qs(parts.query).get("v")
            if video_ids:
                embed = _youtube(video_ids[0])
        elif len(segments) >= 2 and segments[0] in _YOUTUBE_PATH_PREFIXES:
            embed = _youtube(segments[1])
    elif host in YOUTUBE_SHORT_HOSTS:
        if segments:
            embed = _youtube(segments[0])
    elif host in VIMEO_HOSTS:
        # vimeo.com/<id>, vimeo.com/channels/<name>/<id>, vimeo.com/groups/<name>/videos/<id>
        numeric = [segment for segment in segments if _VIMEO_ID.match(segment)]
        if numeric:
            embed = _vimeo(numeric[0])
    elif host in VIMEO_PLAYER_HOSTS:
        if len(segments) >= 2 and segments[0] == "video":
            embed = _vimeo(segments[1])

    if embed:
        logger.debug("Recognised %s video %s in %s", embed.provider, embed.video_id, url)
    return embed
