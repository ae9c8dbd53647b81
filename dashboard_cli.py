#!/usr/bin/env python3

import argparse
import asyncio
import os
import sys
from typing import Any, Dict

from chart_builder import CHART_TYPE_IDS, ChartSpec, describe_mapping, generate_chart_code
from ckan_client import CKANAPIClient
from csv_loader import load_csv
from dashboard_config import Settings, configure_logging
from dashboard_errors import DashboardError
from dashboard_server import main as serve_dashboard
from dataset_service import (
    delete_dataset,
    fetch_datasets,
    filter_datasets,
    format_relative_date,
    portal_stats,
)
from mdx_preview import compile_mdx, render_live
from story_store import StoryStore


def format_package_display(pkg: Dict[str, Any], detailed: bool = False) -> str:
    """Format dataset data for display"""
    if not pkg:
        return "❌ Dataset not found or no data available"

    output = []
    output.append(f"\n{'='*60}")
    output.append(f"📦 DATASET: {pkg.get('title') or pkg.get('name', 'Unknown')}")
    output.append(f"{'='*60}")

    output.append(f"Name: {pkg.get('name', 'N/A')}")
    output.append(f"Organization: {(pkg.get('organization') or {}).get('title', 'N/A')}")
    output.append(f"Author: {pkg.get('author') or 'N/A'}")
    output.append(f"Visibility: {'Private' if pkg.get('private') else 'Public'}")

    modified = pkg.get('metadata_modified')
    if modified:
        output.append(f"Updated: {format_relative_date(modified)}")

    if pkg.get('notes'):
        output.append("\nDescription:")
        output.append(f"  {pkg['notes'][:500]}")

    if pkg.get('tags'):
        tags = [tag.get('display_name', tag.get('name', '')) for tag in pkg['tags']]
        output.append(f"\nTags: {', '.join(tags)}")

    resources = pkg.get('resources') or []
    if resources:
        output.append(f"\n📁 RESOURCES ({len(resources)} files):")
        output.append("-" * 40)
        for i, res in enumerate(resources, 1):
            output.append(f"\n  Resource {i}:")
            output.append(f"    Name: {res.get('name') or res.get('url', 'N/A')}")
            output.append(f"    Format: {res.get('format') or 'N/A'}")
            output.append(f"    Size: {format_size(res.get('size'))}")
            output.append(f"    URL: {res.get('url', 'N/A')}")
            if detailed:
                output.append(f"    ID: {res.get('id', 'N/A')}")

    return "\n".join(output)


SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_size(size: Any) -> str:
    """Human readable resource size; CKAN may report it as a numeric string"""
    try:
        value = float(size or 0)
    except (TypeError, ValueError):
        return "Unknown"
    if value <= 0:
        return "Unknown"
    unit = 0
    while value >= 1024 and unit < len(SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f} {SIZE_UNITS[unit]}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='CKAN admin dashboard')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('serve', help='Run the dashboard API server')

    datasets_parser = subparsers.add_parser('datasets', help='List datasets')
    datasets_parser.add_argument('-q', '--query', default='', help='Filter by title, name or description')
    datasets_parser.add_argument('-o', '--org', default='', help='Filter by organization name')
    datasets_parser.add_argument('-n', '--number', type=int, help='Number of datasets to load')

    show_parser = subparsers.add_parser('show', help='Show dataset details')
    show_parser.add_argument('dataset_id', help='Dataset ID or name')
    show_parser.add_argument('-d', '--detailed', action='store_true', help='Show resource IDs')

    delete_parser = subparsers.add_parser('delete', help='Delete a dataset')
    delete_parser.add_argument('dataset_id', help='Dataset ID or name')
    delete_parser.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation')

    subparsers.add_parser('stats', help='Show portal statistics')

    subparsers.add_parser('stories', help='List saved stories')

    story_parser = subparsers.add_parser('story', help='Print a saved story')
    story_parser.add_argument('slug', help='Story slug')

    preview_parser = subparsers.add_parser('preview', help='Compile a story or MDX file to HTML')
    preview_parser.add_argument('source', help='Story slug or path to an .mdx file')
    preview_parser.add_argument('--live', action='store_true', help='Load chart data from CKAN')
    preview_parser.add_argument('-o', '--output', help='Write HTML to this file')

    chart_parser = subparsers.add_parser('chart', help='Generate a chart snippet for a CSV resource')
    chart_parser.add_argument('url', help='CSV resource URL')
    chart_parser.add_argument('-t', '--type', default='bar', choices=CHART_TYPE_IDS, help='Chart type')
    chart_parser.add_argument('-x', '--x-key', required=True, help='X axis column')
    chart_parser.add_argument('-y', '--y-key', default='', help='Y axis column')
    chart_parser.add_argument('--y-keys', default='', help='Comma separated columns (multiline)')
    chart_parser.add_argument('--check', action='store_true', help='Load the CSV and verify the columns')

    return parser


async def run_command(args, settings: Settings):
    stories = StoryStore(settings.stories_dir)

    if args.command == 'stories':
        items = stories.list()
        print(f"📚 {len(items)} stories in {settings.stories_dir}")
        for i, story in enumerate(items, 1):
            metadata = story['metadata'] or {}
            print(f"  {i}. {metadata.get('title', story['slug'])} ({story['slug']})")
            if metadata.get('author'):
                print(f"     By {metadata['author']}, {metadata.get('date', 'undated')}")
        return

    if args.command == 'story':
        story = stories.get(args.slug)
        print(f"📖 {story['metadata'].get('title', args.slug)}")
        print("-" * 60)
        print(story['content'])
        return

    async with CKANAPIClient(settings.ckan_url, settings.ckan_api_key) as client:
        print(f"🌐 Connected to: {settings.ckan_url}")
        print("-" * 60)

        if args.command == 'datasets':
            datasets = filter_datasets(await fetch_datasets(client, limit=args.number),
                                       args.query, args.org)
            print(f"📊 {len(datasets)} datasets:\n")
            for i, pkg in enumerate(datasets, 1):
                print(f"{i}. {pkg.get('title') or pkg.get('name', 'Unknown')}")
                print(f"   Name: {pkg.get('name', 'N/A')}")
                print(f"   Org: {(pkg.get('organization') or {}).get('title', 'N/A')}")
                print(f"   Resources: {len(pkg.get('resources') or [])}")
                if pkg.get('metadata_modified'):
                    print(f"   Updated: {format_relative_date(pkg['metadata_modified'])}")
                print()

        elif args.command == 'show':
            print(f"📄 Getting details for: {args.dataset_id}")
            print(format_package_display(await client.get_dataset(args.dataset_id), detailed=args.detailed))

        elif args.command == 'delete':
            if not args.yes:
                answer = input(f"Delete dataset '{args.dataset_id}'? [y/N] ")
                if answer.strip().lower() != 'y':
                    print("Cancelled")
                    return
            await delete_dataset(client, args.dataset_id)
            print(f"🗑️  Deleted {args.dataset_id}")

        elif args.command == 'stats':
            stats = await portal_stats(client)
            print("📊 Portal Statistics")
            print(f"  Total Datasets: {stats['totalDatasets']}")
            active = stats['activeUsers']
            print(f"  Active Users: {active if active is not None else 'N/A (admin only)'}")

        elif args.command == 'preview':
            if os.path.isfile(args.source):
                with open(args.source, encoding='utf-8') as f:
                    source = f.read()
            else:
                source = stories.get(args.source)['content']
            compiled = compile_mdx(source)
            if args.live:
                compiled = await render_live(compiled, lambda url: load_csv(client, url))
            print(f"🧩 {len(compiled.components)} components")
            for call in compiled.components:
                status = f"❌ {call.error}" if call.error else "✅"
                print(f"  line {call.line}: <{call.name}> {status}")
            if args.output:
                with open(args.output, 'w', encoding='utf-8') as f:
                    f.write(compiled.html)
                print(f"💾 Wrote {args.output}")
            else:
                print(compiled.html)

        elif args.command == 'chart':
            spec = ChartSpec(
                chart_type=args.type,
                resource_url=args.url,
                x_key=args.x_key,
                y_key=args.y_key,
                y_keys=[key.strip() for key in args.y_keys.split(',') if key.strip()],
            )
            columns = None
            if args.check:
                csv_data = await load_csv(client, args.url)
                columns = csv_data.columns
                print(f"📋 Columns: {', '.join(columns)} ({len(csv_data.rows)} rows)")
            code = generate_chart_code(spec, columns)
            print(f"📈 {describe_mapping(spec)}\n")
            print(code)


def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == 'serve':
        serve_dashboard()
        return

    settings = Settings.from_env()
    configure_logging(settings)
    try:
        asyncio.run(run_command(args, settings))
    except DashboardError as e:
        print(f"❌ Error: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
