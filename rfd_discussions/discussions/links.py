"""Discussion URL helpers: slugs, direct and deep links, room-id extraction.

Two URL shapes point at a discussion room:

* direct:    ``https://chat.example.com/group/ROOM_ID[?msg=...]``
* deep link: ``https://go.rocket.chat/room?host=chat.example.com&path=group%2FROOM_ID``
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import parse_qs, quote, urlsplit

DEEP_LINK_HOST = "go.rocket.chat"
SLUG_MAX_LENGTH = 50

_DIRECT_ROOM_RE = re.compile(r"/group/([^/?#]+)")
_DEEP_LINK_PATH_RE = re.compile(r"^group(?:/|%2F)(.+)$", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', trim dashes, cap at 50 chars."""
    slug = _NON_ALNUM_RE.sub("-", text.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH]


def site_host(site_url: str) -> str:
    """Host (with port) of *site_url*; tolerates a missing scheme."""
    parts = urlsplit(site_url if "://" in site_url else f"//{site_url}")
    return parts.netloc or site_url


def build_direct_link(site_url: str, room_id: str) -> str:
    return f"{site_url.rstrip('/')}/group/{room_id}"


def build_deep_link(site_url: str, room_id: str) -> str:
    """Universal link that opens the room in web, desktop and mobile clients."""
    host = quote(site_host(site_url), safe="")
    path = quote(f"group/{room_id}", safe="")
    return f"https://{DEEP_LINK_HOST}/room?host={host}&path={path}"


def build_discussion_url(site_url: str, room_id: str, use_deep_links: bool) -> str:
    if use_deep_links:
        return build_deep_link(site_url, room_id)
    return build_direct_link(site_url, room_id)


def extract_room_id(url: str) -> Optional[str]:
    """Return the room id a discussion URL points at, or None."""
    if not url:
        return None
    parts = urlsplit(url)

    if parts.netloc.lower() == DEEP_LINK_HOST:
        for value in parse_qs(parts.query).get("path", []):
            match = _DEEP_LINK_PATH_RE.match(value)
            if match:
                return match.group(1)
        return None

    match = _DIRECT_ROOM_RE.search(parts.path)
    return match.group(1) if match else None


def is_valid_discussion_url(url: Optional[str], site_url: str) -> bool:
    """True if *url* points at a room on our own chat server.

    Deep links count when their ``host`` parameter is our host; any other URL
    counts when its own host is ours.  Comparison is case-insensitive.
    """
    if not url:
        return False
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return False

    our_host = site_host(site_url).lower()
    host = parts.netloc.lower()

    if host == DEEP_LINK_HOST:
        host_params = parse_qs(parts.query).get("host", [])
        return bool(host_params) and host_params[0].lower() == our_host

    return host == our_host
