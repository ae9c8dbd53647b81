"""
Tests for the command line interface.
"""

import pytest

from dashboard_cli import build_parser, format_package_display, format_size, run_command
from dashboard_errors import StoryNotFoundError
from story_store import StoryStore


def test_format_size():
    assert format_size(None) == "Unknown"
    assert format_size(512) == "512.00 B"
    assert format_size(2048) == "2.00 KB"
    assert format_size(5 * 1024 ** 3) == "5.00 GB"
    assert format_size("1536") == "1.50 KB"
    assert format_size("unknown") == "Unknown"
    assert format_size(3 * 1024 ** 5) == "3072.00 TB"


def test_format_package_display():
    text = format_package_display({
        "name": "budget",
        "title": "City Budget",
        "organization": {"title": "City Council"},
        "private": True,
        "tags": [{"name": "finance"}],
        "resources": [{"id": "r1", "name": "Budget CSV", "format": "CSV", "size": 2048, "url": "https://x"}],
    }, detailed=True)

    assert "📦 DATASET: City Budget" in text
    assert "Visibility: Private" in text
    assert "Tags: finance" in text
    assert "Size: 2.00 KB" in text
    assert "ID: r1" in text
    assert format_package_display({}) == "❌ Dataset not found or no data available"


def test_parser_commands():
    parser = build_parser()
    args = parser.parse_args(["chart", "https://x/s.csv", "-t", "multiline", "-x", "month", "--y-keys", "a,b"])
    assert (args.command, args.type, args.x_key, args.y_keys) == ("chart", "multiline", "month", "a,b")

    with pytest.raises(SystemExit):
        parser.parse_args(["chart", "https://x/s.csv", "-t", "gantt", "-x", "m"])


async def test_stories_listing(settings, capsys):
    StoryStore(settings.stories_dir).save("rainfall", {"title": "Rainfall", "author": "Sam"}, "# Rain")

    await run_command(build_parser().parse_args(["stories"]), settings)

    out = capsys.readouterr().out
    assert "📚 1 stories" in out
    assert "1. Rainfall (rainfall)" in out


async def test_story_missing(settings):
    with pytest.raises(StoryNotFoundError):
        await run_command(build_parser().parse_args(["story", "missing"]), settings)


async def test_chart_command_with_column_check(settings, ckan_url, capsys):
    args = build_parser().parse_args(
        ["chart", f"{ckan_url}/files/sales.csv", "-x", "month", "-y", "sales", "--check"])

    await run_command(args, settings)

    out = capsys.readouterr().out
    assert "📋 Columns: month, sales, returns (3 rows)" in out
    assert "📈 Bar Chart with month vs sales" in out
    assert 'yKey="sales"' in out


async def test_stats_command(settings, fake_ckan, capsys):
    fake_ckan.add_dataset("one")

    await run_command(build_parser().parse_args(["stats"]), settings)

    out = capsys.readouterr().out
    assert "Total Datasets: 1" in out
    assert "Active Users: 3" in out
