from __future__ import annotations

import pytest

from ingest.records import (
    DEFAULT_CONTENT_TYPE,
    MalformedRecord,
    extract_title,
    parse_line,
    parse_record,
)


def test_parse_record_applies_defaults():
    markup = "<html><head><title>\n  Hi &amp;   there </title></head></html>"
    record = parse_record({"url": "https://Example.com/a", "body": markup})

    assert record.domain == "example.com"
    assert record.html == markup
    assert record.status == 200
    assert record.content_type == DEFAULT_CONTENT_TYPE
    assert record.size == len(markup)
    assert record.title == "Hi & there"
    assert len(record.fetched_at) == len("2024-01-01 00:00:00")


def test_parse_record_accepts_alternate_keys():
    record = parse_record(
        {
            "url": "https://a.test/missing",
            "html": "<p>gone</p>",
            "status_code": "404",
            "content_type": "text/plain",
            "size": 42,
            "title": "Explicit",
            "timestamp": 0,
        }
    )

    assert record.status == 404
    assert record.content_type == "text/plain"
    assert record.size == 42
    assert record.title == "Explicit"
    assert record.fetched_at == "1970-01-01 00:00:00"


@pytest.mark.parametrize(
    "data",
    [
        {"html": "<p>no url</p>"},
        {"url": "https://a.test/"},
        {"url": "", "html": "<p>x</p>"},
        {"url": "not a url", "html": "<p>x</p>"},
    ],
)
def test_parse_record_rejects_incomplete_records(data):
    with pytest.raises(MalformedRecord):
        parse_record(data)


@pytest.mark.parametrize(
    "data",
    [
        {"url": "https://a.test/", "html": "x", "size": 2**63},
        {"url": "https://a.test/", "html": "x", "status": str(-(2**63) - 1)},
        {"url": "https://a.test/", "body": "\ud800"},
        {"url": "https://a.test/", "html": "x", "content_type": "text/\udc80"},
    ],
)
def test_parse_record_rejects_values_sqlite_cannot_store(data):
    with pytest.raises(MalformedRecord):
        parse_record(data)


def test_parse_record_keeps_integers_at_the_sqlite_bounds():
    record = parse_record({"url": "https://a.test/", "html": "x", "size": 2**63 - 1, "status": -(2**63)})

    assert record.size == 2**63 - 1
    assert record.status == -(2**63)


def test_legacy_pages_may_omit_markup():
    record = parse_record({"url": "/relative"}, require_markup=False, fallback_domain="Legacy.test")

    assert record.domain == "legacy.test"
    assert record.html is None
    assert record.size == 0
    assert record.title is None


def test_parse_line_handles_blank_and_invalid_lines():
    assert parse_line("   \n") is None
    with pytest.raises(MalformedRecord):
        parse_line("{not json")
    with pytest.raises(MalformedRecord):
        parse_line("[1, 2]")


def test_extract_title_without_title_tag():
    assert extract_title("<html><body>no title</body></html>") is None
    assert extract_title("<TITLE>  </TITLE>") is None
