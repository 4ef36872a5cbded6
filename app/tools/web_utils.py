from __future__ import annotations

from urllib.parse import urlparse

FAVICON_SERVICE = "https://www.google.com/s2/favicons?domain={host}&sz=32"


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def extract_hostname(url: str) -> str:
    """Hostname for activity messages; falls back to the raw string."""
    try:
        return urlparse(url).hostname or url
    except ValueError:
        return url


def favicon_url(url: str) -> str:
    if not is_valid_url(url):
        return ""
    return FAVICON_SERVICE.format(host=extract_hostname(url))


def dedupe_urls(urls: list[str]) -> list[str]:
    """Drop blanks and repeats, keeping first-seen order."""
    seen: set[str] = set()
    ordered: list[str] = []
    for url in urls:
        cleaned = (url or "").strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        ordered.append(cleaned)
    return ordered
