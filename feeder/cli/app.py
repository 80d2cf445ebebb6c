"""feeder command-line interface.

Each command loads the configuration, opens the database and runs the
matching handler from feeder.tools.feed_tools inside one event loop.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import click

from feeder.config import FeederConfig, load_config
from feeder.context import AppContext, open_context
from feeder.errors import ConfigError
from feeder.logging_config import logger, setup_logging
from feeder.tools import feed_tools


Handler = Callable[[AppContext], Awaitable[Dict[str, Any]]]


def _run(config: FeederConfig, handler: Handler) -> Dict[str, Any]:
    """Run one async handler against a fresh AppContext."""

    async def runner() -> Dict[str, Any]:
        async with open_context(config) as ctx:
            return await handler(ctx)

    return asyncio.run(runner())


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option(
    "--log-level",
    default=None,
    help="Override FEEDER_LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)",
)
@click.pass_context
def main(ctx: click.Context, log_level: Optional[str]) -> None:
    """Track RSS/Atom feeds and post new articles to Notebrook."""
    try:
        config = load_config()
    except ConfigError as e:
        _fail(str(e))

    setup_logging(log_level or config.log_level)
    logger.debug(f"Using database at {config.db_path}")
    ctx.obj = config


@main.command()
@click.argument("url")
@click.pass_obj
def add(config: FeederConfig, url: str) -> None:
    """Add a feed, YouTube channel, Mastodon profile or blog by URL."""
    result = _run(config, lambda ctx: feed_tools.add_feed(ctx, url))

    if not result["success"]:
        _fail(result["error"])

    feed = result["feed"]
    click.echo(f"Added: {feed['title'] or feed['original_url']} [{feed['source_type']}]")
    click.echo(f"  Feed URL: {feed['resolved_feed_url']}")


@main.command(name="list")
@click.pass_obj
def list_command(config: FeederConfig) -> None:
    """List configured feeds."""
    result = _run(config, feed_tools.list_feeds)

    if not result["feeds"]:
        click.echo("No feeds configured. Use 'feeder add <url>' to add one.")
        return

    for feed in result["feeds"]:
        click.echo(f"{feed['id']:>4}  {feed['title'] or '(untitled)'}")
        click.echo(f"      {feed['original_url']}")
        if feed["resolved_feed_url"] and feed["resolved_feed_url"] != feed["original_url"]:
            click.echo(f"      -> {feed['resolved_feed_url']}")


def _choose_feed(config: FeederConfig) -> Optional[int]:
    feeds = _run(config, feed_tools.list_feeds)["feeds"]
    if not feeds:
        click.echo("No feeds configured.")
        return None

    for index, feed in enumerate(feeds, start=1):
        click.echo(f"{index:>3}. {feed['title'] or feed['original_url']}")

    choice = click.prompt(
        "Feed to remove (0 to cancel)",
        type=click.IntRange(0, len(feeds)),
        default=0,
    )
    if choice == 0:
        return None
    return feeds[choice - 1]["id"]


@main.command()
@click.argument("feed_id", type=int, required=False)
@click.pass_obj
def remove(config: FeederConfig, feed_id: Optional[int]) -> None:
    """Remove a feed by id, or pick one interactively."""
    if feed_id is None:
        feed_id = _choose_feed(config)
        if feed_id is None:
            click.echo("Cancelled.")
            return

    result = _run(config, lambda ctx: feed_tools.remove_feed(ctx, feed_id))
    if not result["success"]:
        _fail(result["error"])
    click.echo(result["message"])


@main.command()
@click.option("--dry-run", is_flag=True, help="Show what would be notified; change nothing")
@click.option("--skip-notify", is_flag=True, help="Mark new articles as seen without sending")
@click.pass_obj
def run(config: FeederConfig, dry_run: bool, skip_notify: bool) -> None:
    """Fetch every feed and notify new articles."""
    result = _run(
        config,
        lambda ctx: feed_tools.run_feeds(ctx, dry_run=dry_run, skip_notify=skip_notify),
    )

    if "error" in result:
        _fail(result["error"])

    for entry in result["results"]:
        if entry["status"] == "failed":
            click.echo(f"[FAILED] {entry['feed']}: {entry['error']}")
        elif entry["status"] == "skipped":
            click.echo(f"[ok] {entry['feed']}: no new articles")
        else:
            click.echo(
                f"[ok] {entry['feed']}: {entry['new_articles']} new, "
                f"{entry['notified']} notified, {entry['failed']} failed"
            )
        for message in entry.get("would_notify", []):
            click.echo(f"    would notify: {message}")

    summary = result["summary"]
    click.echo(
        f"{summary['feeds']} feeds ({result['mode']}): "
        f"{summary['new_articles']} new, {summary['notified']} notified, "
        f"{summary['failed_notifications']} failed notifications, "
        f"{summary['failed_feeds']} failed feeds"
    )

    if not result["success"]:
        sys.exit(1)


@main.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def import_command(config: FeederConfig, path: Path) -> None:
    """Import feeds from an OPML file."""
    content = path.read_text(encoding="utf-8")
    result = _run(config, lambda ctx: feed_tools.import_feeds(ctx, content))

    if not result["success"]:
        _fail(result["error"])

    for feed in result["added"]:
        click.echo(f"Added: {feed['title'] or feed['original_url']}")
    for url in result["duplicates"]:
        click.echo(f"Already configured: {url}")
    for item in result["invalid"]:
        click.echo(f"Skipped {item['url']}: {item['error']}")

    click.echo(
        f"Imported {len(result['added'])}, {len(result['duplicates'])} duplicates, "
        f"{len(result['invalid'])} invalid"
    )


@main.command(name="export")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    default=None,
    help="Write OPML to this file instead of stdout",
)
@click.pass_obj
def export_command(config: FeederConfig, output: Optional[Path]) -> None:
    """Export feeds as OPML."""
    result = _run(config, feed_tools.export_feeds)

    if output is None:
        click.echo(result["opml"])
        return

    output.write_text(result["opml"], encoding="utf-8")
    click.echo(f"Exported {result['count']} feeds to {output}")


if __name__ == "__main__":
    main()
