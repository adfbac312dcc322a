"""Ingestion of crawled page records: parse, classify, extract, write."""

from .classify import Classification, classify
from .links import LINK_CAP, extract_links
from .records import MalformedRecord, PageRecord, parse_line, parse_record

__all__ = [
    "Classification",
    "LINK_CAP",
    "MalformedRecord",
    "PageRecord",
    "classify",
    "extract_links",
    "parse_line",
    "parse_record",
]
