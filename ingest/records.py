"""Parse line-delimited crawl records into normalized page records."""

from __future__ import annotations

import html as html_lib
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

DEFAULT_STATUS = 200
DEFAULT_CONTENT_TYPE = "text/html; charset=utf-8"

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)
_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# SQLite INTEGER is a signed 64-bit value.
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1


class MalformedRecord(ValueError):
    """Raised when an input line cannot be turned into a page record."""


@dataclass(frozen=True, slots=True)
class PageRecord:
    url: str
    domain: str
    html: Optional[str]
    status: int
    content_type: str
    size: int
    title: Optional[str]
    fetched_at: str


def utc_timestamp(moment: datetime | None = None) -> str:
    """Format ``moment`` (default now) the way SQLite's CURRENT_TIMESTAMP does."""

    value = moment or datetime.now(timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def url_domain(url: str) -> Optional[str]:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def extract_title(markup: str | None) -> Optional[str]:
    if not markup:
        return None
    match = _TITLE_RE.search(markup)
    if not match:
        return None
    text = " ".join(html_lib.unescape(match.group(1)).split())
    return text or None


def _coerce_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if not _INT_MIN <= number <= _INT_MAX:
        raise MalformedRecord(f"{field_name} {number} does not fit a 64-bit integer")
    return number


def _require_utf8(value: Optional[str], field_name: str) -> None:
    if value is None:
        return
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise MalformedRecord(f"{field_name} is not valid UTF-8 text") from exc


def _coerce_timestamp(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return utc_timestamp(datetime.fromtimestamp(float(value), tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    return text or None


def parse_record(
    data: Mapping[str, Any],
    *,
    require_markup: bool = True,
    default_status: int = DEFAULT_STATUS,
    default_content_type: str = DEFAULT_CONTENT_TYPE,
    fallback_domain: str | None = None,
) -> PageRecord:
    """Normalize one decoded record.

    ``html`` and ``body`` are accepted interchangeably for the markup, as are
    ``status`` and ``status_code``. Missing status, content type and size fall
    back to ``default_status``, ``default_content_type`` and the length of the
    markup. Legacy pages embedded in crawl results may carry no markup at all,
    which is what ``require_markup=False`` is for.
    Integers outside the SQLite range and text that cannot be encoded as UTF-8
    make the record malformed.
    """

    if not isinstance(data, Mapping):
        raise MalformedRecord("record is not a JSON object")

    url = data.get("url")
    if not isinstance(url, str) or not url.strip():
        raise MalformedRecord("record has no url")
    url = url.strip()

    markup = data.get("html")
    if not isinstance(markup, str):
        markup = data.get("body")
    if not isinstance(markup, str):
        if require_markup:
            raise MalformedRecord(f"record for {url} has neither html nor body")
        markup = None

    domain = url_domain(url) or (fallback_domain or "").strip().lower()
    if not domain:
        raise MalformedRecord(f"cannot derive a domain from {url!r}")

    status = _coerce_int(data.get("status"), "status")
    if status is None:
        status = _coerce_int(data.get("status_code"), "status_code")
    content_type = data.get("content_type")
    if not isinstance(content_type, str) or not content_type.strip():
        content_type = default_content_type
    size = _coerce_int(data.get("size"), "size")
    if size is None or size < 0:
        size = len(markup) if markup is not None else 0

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        title = extract_title(markup)
    else:
        title = title.strip()

    fetched_at = _coerce_timestamp(data.get("fetched_at"))
    if fetched_at is None:
        fetched_at = _coerce_timestamp(data.get("timestamp"))

    checked = (
        ("url", url),
        ("html", markup),
        ("content_type", content_type),
        ("title", title),
        ("fetched_at", fetched_at),
    )
    for field_name, value in checked:
        _require_utf8(value, field_name)

    return PageRecord(
        url=url,
        domain=domain,
        html=markup,
        status=status if status is not None else default_status,
        content_type=content_type.strip(),
        size=size,
        title=title,
        fetched_at=fetched_at or utc_timestamp(),
    )


def parse_line(line: str, **options: Any) -> Optional[PageRecord]:
    """Parse one JSONL line; blank lines yield ``None``."""

    text = line.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedRecord(f"invalid JSON: {exc.msg}") from exc
    return parse_record(data, **options)


__all__ = [
    "DEFAULT_CONTENT_TYPE",
    "DEFAULT_STATUS",
    "MalformedRecord",
    "PageRecord",
    "extract_title",
    "parse_line",
    "parse_record",
    "url_domain",
    "utc_timestamp",
]
