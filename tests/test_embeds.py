"""Tests for embed construction and formatting helpers."""

import pytest

from botyard.embeds import (
    DEFAULT_COLOR,
    MAX_FIELDS,
    build_embed,
    format_duration,
    format_size,
    parse_color,
    progress_bar,
    truncate,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("#ff0000", 0xFF0000),
        ("0x00ff00", 0x00FF00),
        ("0000FF", 0x0000FF),
        (0x123456, 0x123456),
        (None, DEFAULT_COLOR),
        ("", DEFAULT_COLOR),
        ("not a color", DEFAULT_COLOR),
        (0x1000000, DEFAULT_COLOR),
        (True, DEFAULT_COLOR),
    ],
)
def test_parse_color(value, expected) -> None:
    assert parse_color(value) == expected


def test_truncate() -> None:
    assert truncate("short", 10) == "short"
    assert truncate("abcdefghij", 5) == "abcd…"
    assert len(truncate("x" * 2000, 1024)) == 1024


@pytest.mark.parametrize(
    "ms,expected",
    [(0, "0:00"), (65_000, "1:05"), (3_723_000, "1:02:03")],
)
def test_format_duration(ms: int, expected: str) -> None:
    assert format_duration(ms) == expected


def test_progress_bar() -> None:
    bar = progress_bar(30_000, 60_000, width=10)
    assert bar.startswith("█████░░░░░")
    assert bar.endswith("0:30 / 1:00")


def test_progress_bar_zero_total() -> None:
    assert progress_bar(5_000, 0, width=4).startswith("░░░░")


def test_format_size() -> None:
    assert format_size(2_500_000_000) == "2.5 GB"
    assert format_size(3_400_000) == "3.4 MB"
    assert format_size(12_000) == "12 KB"


class TestBuildEmbed:
    """Tests for stored embed descriptions."""

    def test_defaults(self) -> None:
        embed = build_embed(None)
        assert embed.title == "Embed"
        assert embed.description == "No description"
        assert embed.color.value == DEFAULT_COLOR

    def test_custom_defaults(self) -> None:
        embed = build_embed({}, "Event", "An event occurred")
        assert embed.title == "Event"
        assert embed.description == "An event occurred"

    def test_full_description(self) -> None:
        embed = build_embed(
            {
                "title": "Rules",
                "description": "Be nice",
                "color": "#ff0000",
                "fields": [
                    {"name": "One", "value": "No spam", "inline": True},
                    {"name": "", "value": "skipped"},
                    "not a dict",
                ],
                "footer": {"text": "Mods"},
                "thumbnail": "https://example.com/t.png",
                "image": {"url": "https://example.com/i.png"},
            }
        )
        assert embed.title == "Rules"
        assert embed.color.value == 0xFF0000
        assert len(embed.fields) == 1
        assert embed.fields[0].inline is True
        assert embed.footer.text == "Mods"
        assert embed.thumbnail.url == "https://example.com/t.png"
        assert embed.image.url == "https://example.com/i.png"

    def test_field_count_capped(self) -> None:
        fields = [{"name": f"f{i}", "value": "v"} for i in range(40)]
        assert len(build_embed({"fields": fields}).fields) == MAX_FIELDS

    def test_long_title_truncated(self) -> None:
        assert len(build_embed({"title": "t" * 400}).title) == 256
