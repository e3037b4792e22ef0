"""URL helpers: canonical form for dedup and ATS detection."""

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

TRACKING_PARAMS: frozenset[str] = frozenset({
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "ref",
    "referer",
    "source",
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
})

# host substring -> ats type, checked before path hints
_ATS_HOSTS: tuple[tuple[str, str], ...] = (
    ("greenhouse.io", "greenhouse"),
    ("lever.co", "lever"),
    ("myworkdayjobs.com", "workday"),
    ("workday.com", "workday"),
)

_ATS_PATH_HINTS: tuple[tuple[str, str], ...] = (
    ("/greenhouse/", "greenhouse"),
    ("/gh/", "greenhouse"),
    ("/lever/", "lever"),
    ("/workday/", "workday"),
    ("/wd/", "workday"),
)


def normalize_url(url: str) -> str:
    """Canonical form of a job URL, used as the per-user dedup key.

    Lowercases scheme and host, drops tracking parameters and the fragment,
    strips a trailing slash from non-root paths. Remaining query parameters
    keep their order. Unparsable input is returned unchanged.
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        logger.debug("Cannot parse URL for normalization: %s", url)
        return url
    if not parts.scheme or not parts.netloc:
        return url

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in TRACKING_PARAMS
    ]
    path = parts.path
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    return urlunsplit((
        parts.scheme.lower(),
        parts.netloc.lower(),
        path,
        urlencode(query),
        "",
    ))


def detect_ats_type(url: str) -> str:
    """Return 'greenhouse', 'lever', 'workday' or 'unknown'."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "unknown"
    host = (parts.hostname or "").lower()
    for needle, ats in _ATS_HOSTS:
        if needle in host:
            return ats
    path = parts.path.lower()
    for needle, ats in _ATS_PATH_HINTS:
        if needle in path:
            return ats
    return "unknown"


def hostname(url: str) -> str:
    """Lowercased hostname, or '' when the URL has none."""
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""
