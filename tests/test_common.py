import pytest

from markdrop.services.common import (
    looks_like_url,
    merge_tags,
    normalize_url,
    parse_tags,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("https://example.com", True),
        ("http://localhost", True),
        ("example.com/path", True),
        ("not a url", False),
        ("", False),
        ("   ", False),
    ],
)
def test_looks_like_url(value, expected):
    assert looks_like_url(value) is expected


@pytest.mark.parametrize(
    "value,expected",
    [
        ("example.com", "https://example.com/"),
        ("HTTP://Example.COM/Path?q=1", "http://example.com/Path?q=1"),
        ("  https://example.com/a#frag ", "https://example.com/a#frag"),
        ("", ""),
        ("http://[::1", ""),
        ("https://[not-a-host/path", ""),
    ],
)
def test_normalize_url(value, expected):
    assert normalize_url(value) == expected


def test_merge_tags_keeps_first_spelling():
    assert merge_tags(["Python", "web"], ["python", "Web", "docs"]) == [
        "Python",
        "web",
        "docs",
    ]


def test_parse_tags_accepts_strings_and_lists():
    assert parse_tags("one, two  three") == ["one", "two", "three"]
    assert parse_tags(["one", "two,three", None]) == ["one", "two", "three"]
    assert parse_tags(None) == []
