"""Evidence and signal predicates shared by the per-track rule modules."""

from __future__ import annotations

from typing import Any, Callable
from urllib.parse import urlparse

from ..rule_engine import field_of

SCREENSHOT_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")
DATA_EXPORT_EXTENSIONS = (".csv", ".json", ".txt", ".xlsx", ".xls")
DEPLOYMENT_HOST_SUFFIXES = ("vercel.app", "netlify.app", "herokuapp.com", "railway.app", "github.io")
MIN_TEXT_LENGTH = 50

Predicate = Callable[[Any], bool]


def _kind(item: Any) -> str:
    return str(field_of(item, "kind") or "").upper()


def url_host(item: Any) -> str:
    raw = field_of(item, "url")
    if not isinstance(raw, str):
        return ""
    return (urlparse(raw.strip()).hostname or "").lower()


def _host_matches(host: str, suffix: str) -> bool:
    return host == suffix or host.endswith(f".{suffix}")


def url_on_domains(*domains: str) -> Predicate:
    """URL evidence must point at one of `domains`; other kinds pass through."""

    def _check(item: Any) -> bool:
        if _kind(item) != "URL":
            return True
        host = url_host(item)
        return any(_host_matches(host, domain) for domain in domains)

    return _check


def url_contains(*needles: str) -> Predicate:
    """URL evidence must mention one of `needles` (case-insensitive)."""

    def _check(item: Any) -> bool:
        if _kind(item) != "URL":
            return True
        url = str(field_of(item, "url") or "").lower()
        return any(needle.lower() in url for needle in needles)

    return _check


def text_min_length(min_length: int = MIN_TEXT_LENGTH) -> Predicate:
    def _check(item: Any) -> bool:
        if _kind(item) != "TEXT":
            return True
        return len(str(field_of(item, "text") or "").strip()) >= min_length

    return _check


def file_extension_in(kind: str, extensions: tuple[str, ...]) -> Predicate:
    """Evidence of `kind` carrying a file_key must use one of `extensions`."""

    def _check(item: Any) -> bool:
        if _kind(item) != kind:
            return True
        file_key = field_of(item, "file_key")
        if not isinstance(file_key, str) or not file_key.strip():
            return True
        return file_key.strip().lower().endswith(extensions)

    return _check


def all_of(*predicates: Predicate) -> Predicate:
    def _check(item: Any) -> bool:
        return all(predicate(item) for predicate in predicates)

    return _check


def metadata_flag(key: str) -> Predicate:
    """Signal predicate: `metadata[key]` is truthy."""

    def _check(signal: Any) -> bool:
        metadata = field_of(signal, "metadata")
        return isinstance(metadata, dict) and bool(metadata.get(key))

    return _check


STANDARD_FILE_CHECKS = all_of(
    file_extension_in("SCREENSHOT", SCREENSHOT_EXTENSIONS),
    file_extension_in("DATA_EXPORT", DATA_EXPORT_EXTENSIONS),
)
