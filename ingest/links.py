"""Tolerant anchor ``href`` scanning for raw page markup."""

from __future__ import annotations

import json
import re
from typing import Iterable, Iterator, Optional

LINK_CAP = 1000
MAX_LINK_LENGTH = 500

_ANCHOR_HREF_RE = re.compile(
    r"""<a\b[^>]*?\shref\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""",
    re.IGNORECASE | re.DOTALL,
)


def _is_noise(target: str) -> bool:
    if not target:
        return True
    if target.startswith("#") or target == "/" or len(target) >= MAX_LINK_LENGTH:
        return True
    return target[:11].lower() == "javascript:"


def iter_links(markup: str | None) -> Iterator[str]:
    """Yield anchor targets in document order, noise excluded."""

    if not markup:
        return
    for match in _ANCHOR_HREF_RE.finditer(markup):
        raw = next((group for group in match.groups() if group is not None), "")
        target = raw.strip()
        if _is_noise(target):
            continue
        yield target


def extract_links(markup: str | None, cap: int = LINK_CAP) -> list[str]:
    """Return up to ``cap`` anchor targets in first-seen order."""

    links: list[str] = []
    if cap <= 0:
        return links
    for target in iter_links(markup):
        links.append(target)
        if len(links) >= cap:
            break
    return links


def serialize_links(links: Iterable[str]) -> str:
    return json.dumps(list(links), ensure_ascii=False)


def deserialize_links(payload: Optional[str]) -> list[str]:
    if not payload:
        return []
    try:
        data = json.loads(payload)
    except (TypeError, json.JSONDecodeError):
        return []
    if not isinstance(data, list):
        return []
    return [str(item) for item in data]


__all__ = ["LINK_CAP", "MAX_LINK_LENGTH", "deserialize_links", "extract_links", "iter_links", "serialize_links"]
