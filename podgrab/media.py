"""Media URL resolution for feed entries."""

import logging
import os
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

import requests

from config import settings
from podgrab.models import Entry

logger = logging.getLogger(__name__)

AUDIO_TYPES_TO_EXTS = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/flac": ".flac",
    "audio/ogg": ".ogg",
    "audio/vorbis": ".ogg",
    "audio/mp4": ".m4a",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/aac": ".aac",
}
VALID_AUDIO_EXTS = set(AUDIO_TYPES_TO_EXTS.values())

MAX_URL_EMBEDS = 5


@dataclass(frozen=True)
class MediaRef:
    """Resolved primary media URL and its file extension."""

    url: str | None
    ext: str | None


def get_url_ext(url: str | None) -> str:
    """Extension of the URL path (``.mp3``), or an empty string."""
    if not url:
        return ""
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    return os.path.splitext(path)[1] if path else ""


def is_audio_url(url: str | None) -> bool:
    ext = get_url_ext(url)
    return bool(ext) and ext.lower() in VALID_AUDIO_EXTS


def resolve_media(entry: Entry) -> MediaRef:
    """Pick the primary audio URL of an entry.

    The entry link wins when it points straight at an audio file, since some
    feeds wrap the enclosure URL in tracking redirects. Otherwise the
    enclosure is used, by URL extension first and then by declared MIME type.
    """
    if entry.link and is_audio_url(entry.link):
        return MediaRef(entry.link, get_url_ext(entry.link))

    enclosure = entry.enclosure
    if enclosure and is_audio_url(enclosure.url):
        return MediaRef(enclosure.url, get_url_ext(enclosure.url))

    if enclosure and enclosure.url and enclosure.type in AUDIO_TYPES_TO_EXTS:
        return MediaRef(enclosure.url, AUDIO_TYPES_TO_EXTS[enclosure.type])

    return MediaRef(None, None)


def get_image_url(obj) -> str | None:
    """Image URL of an entry or feed: image url, image link, then itunes image."""
    image = obj.image or {}
    if image.get("url"):
        return image["url"]
    if image.get("link"):
        return image["link"]
    if obj.itunes.get("image"):
        return obj.itunes["image"]
    return None


def possible_url_embeds(url: str, max_amount: int = MAX_URL_EMBEDS) -> list[str]:
    """Candidate direct URLs embedded in a tracking URL's path.

    ``https://track.example/p/abc/cdn.example/ep.mp3`` yields
    ``https://ep.mp3``, ``https://cdn.example/ep.mp3``, ... shortest first.
    """
    path = urlparse(url).path
    candidates = []
    for i, char in enumerate(path):
        if char != "/":
            continue
        embed = path[i + 1:]
        if not embed.startswith("http"):
            embed = f"https://{embed}"
        candidates.append(unquote(embed))
    return list(reversed(candidates[-max_amount:]))


def resolve_url_embed(url: str, timeout: float | None = None) -> str | None:
    """Try embedded URL candidates and return the first that responds.

    Best effort: any failure moves on to the next candidate. The timeout
    defaults to settings.probe_timeout.
    """
    timeout = timeout or settings.probe_timeout
    for candidate in possible_url_embeds(url):
        try:
            resp = requests.head(
                candidate,
                timeout=timeout,
                allow_redirects=True,
                headers={"accept": "*/*"},
            )
            resp.raise_for_status()
        except (requests.RequestException, ValueError) as e:
            logger.debug("Embedded URL candidate %s failed: %s", candidate, e)
            continue
        logger.debug("Found embedded URL %s in %s", candidate, url)
        return candidate
    return None
