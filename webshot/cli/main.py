#!/usr/bin/env python3
"""Main CLI entry point for Webshot using Typer.

Commands create the database schema, run a long-lived worker that
dispatches queued jobs, or run one capture, frame sequence or crawl to
completion in-process.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Annotated, List, Optional

import typer

from .. import __version__
from ..config import load_settings
from ..errors import WebshotError
from ..models.capture import AutoScrollOptions, CaptureOptions
from ..service import CapturePipeline


app = typer.Typer(
    name="webshot",
    help="Webshot - background web page capture pipeline",
    add_completion=False,
    rich_markup_mode="rich"
)

CLI_OWNER = "cli"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_pipeline(config: Optional[Path]) -> CapturePipeline:
    try:
        settings = load_settings(config)
    except Exception as e:
        typer.echo(f"❌ Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2)
    return CapturePipeline.from_settings(settings)


def _run_once(pipeline: CapturePipeline, request, report, timeout: Optional[float]):
    """Create tables, submit one request, dispatch until idle, then report.

    Args:
        pipeline: Pipeline to run in-process
        request: Coroutine function submitting the work
        report: Coroutine function awaited with the request's result
        timeout: Seconds to wait for the queue to drain

    Returns:
        Whatever ``report`` returns
    """
    async def _run():
        try:
            await pipeline.init_db()
            result = await request()
            await pipeline.run_until_idle(timeout)
            return await report(result)
        finally:
            await pipeline.stop()

    try:
        return asyncio.run(_run())
    except WebshotError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)
    except asyncio.TimeoutError:
        typer.echo(f"❌ Jobs did not finish within {timeout}s", err=True)
        raise typer.Exit(code=1)


async def _print_group(pipeline: CapturePipeline, group_id: str) -> None:
    group = await pipeline.store.get_group(group_id)
    typer.echo(f"Group {group.id}: {group.name} [{group.status}]")
    for capture in await pipeline.store.list_group_captures(group_id):
        detail = capture.image_path or capture.error_message or ""
        typer.echo(f"  {capture.kind:10} {capture.status:10} {capture.url} {detail}")


@app.callback()
def main():
    """
    Webshot - background web page capture pipeline.

    Captures rendered pages as images through a durable job queue.
    """
    pass


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"Webshot v{__version__}")


@app.command(name="init-db")
def init_db(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration")
    ] = None,
):
    """Create the capture tables if they do not exist."""
    _configure_logging(False)
    pipeline = _build_pipeline(config)

    async def _init():
        try:
            await pipeline.init_db()
        finally:
            await pipeline.store.close()

    asyncio.run(_init())
    typer.echo("✅ Database initialized")


@app.command()
def worker(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration")
    ] = None,

    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", help="Maximum concurrently executing jobs")
    ] = None,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,
):
    """
    Run a worker that dispatches queued capture jobs until interrupted.
    """
    _configure_logging(verbose)
    pipeline = _build_pipeline(config)
    if concurrency:
        pipeline.scheduler.concurrency = concurrency

    async def _serve():
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass

        await pipeline.init_db()
        await pipeline.start()
        typer.echo(f"Worker started (concurrency={pipeline.scheduler.concurrency}), press Ctrl+C to stop")
        try:
            await stop_event.wait()
        finally:
            await pipeline.stop()

    asyncio.run(_serve())


@app.command()
def capture(
    url: Annotated[str, typer.Argument(help="URL to capture")],

    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration")
    ] = None,

    width: Annotated[int, typer.Option("--width", help="Viewport width")] = 1920,

    height: Annotated[int, typer.Option("--height", help="Viewport height")] = 1080,

    full_page: Annotated[
        bool,
        typer.Option("--full-page/--viewport-only", help="Capture the whole document or only the viewport")
    ] = True,

    unsticky: Annotated[
        bool,
        typer.Option("--unsticky", help="Make fixed and sticky elements static")
    ] = False,

    cookie_prevention: Annotated[
        bool,
        typer.Option("--block-cookies", help="Block storage, cookie banners and trackers")
    ] = False,

    stealth: Annotated[
        bool,
        typer.Option("--stealth", help="Mask automation signals")
    ] = False,

    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Seconds to wait for the job queue to drain")
    ] = None,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,
):
    """
    Capture a single page.

    Examples:

        webshot capture https://example.com

        webshot capture --viewport-only --width 1280 --height 720 https://example.com
    """
    _configure_logging(verbose)
    pipeline = _build_pipeline(config)
    options = CaptureOptions(
        width=width,
        height=height,
        full_page=full_page,
        unsticky=unsticky,
        cookie_prevention=cookie_prevention,
        stealth_mode=stealth,
    )

    async def _report(record):
        return await pipeline.store.get_capture(record.id)

    result = _run_once(
        pipeline,
        lambda: pipeline.request_capture(CLI_OWNER, url, options),
        _report,
        timeout,
    )
    if result.status == "completed":
        typer.echo(f"✅ {result.url} -> {result.image_path} ({result.width}x{result.height})")
    else:
        typer.echo(f"❌ {result.url}: {result.error_message}", err=True)
        raise typer.Exit(code=1)


@app.command()
def frames(
    url: Annotated[str, typer.Argument(help="URL to capture")],

    delays: Annotated[
        List[float],
        typer.Option("--delay", "-d", help="Seconds after load for one frame (repeatable)")
    ],

    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration")
    ] = None,

    auto_scroll: Annotated[
        bool,
        typer.Option("--auto-scroll", help="Scroll-capture the page after the frames finish")
    ] = False,

    scroll_selector: Annotated[
        str,
        typer.Option("--scroll-selector", help="Scrollable region for auto-scroll")
    ] = "#viewport",

    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Seconds to wait for the job queue to drain")
    ] = None,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,
):
    """
    Capture a page repeatedly at the given delays after load.

    Examples:

        webshot frames https://example.com -d 0 -d 5 -d 10 --auto-scroll
    """
    _configure_logging(verbose)
    pipeline = _build_pipeline(config)
    scroll = AutoScrollOptions(selector=scroll_selector) if auto_scroll else None

    async def _report(group):
        await _print_group(pipeline, group.id)

    _run_once(
        pipeline,
        lambda: pipeline.request_frames(CLI_OWNER, url, delays, auto_scroll=scroll),
        _report,
        timeout,
    )


@app.command()
def crawl(
    base_url: Annotated[str, typer.Argument(help="Base URL to crawl from")],

    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration")
    ] = None,

    max_depth: Annotated[
        Optional[int],
        typer.Option("--max-depth", help="Approximate crawl depth")
    ] = None,

    max_pages: Annotated[
        Optional[int],
        typer.Option("--max-pages", help="Maximum URLs to discover")
    ] = None,

    capture_all: Annotated[
        bool,
        typer.Option("--capture", help="Capture every discovered URL")
    ] = False,

    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Seconds to wait for the job queue to drain")
    ] = None,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,
):
    """
    Discover same-origin URLs and optionally capture all of them.

    Examples:

        webshot crawl https://example.com --max-pages 20

        webshot crawl https://example.com --capture
    """
    _configure_logging(verbose)
    pipeline = _build_pipeline(config)

    async def _report(group):
        group = await pipeline.store.get_group(group.id)
        urls = group.params.get('discovered_urls', [])
        typer.echo(f"Discovered {len(urls)} URLs:")
        for url in urls:
            typer.echo(f"  {url}")

        if capture_all and urls:
            await pipeline.select_crawl_urls(group.id, urls)
            await pipeline.run_until_idle(timeout)
            await _print_group(pipeline, group.id)

    _run_once(
        pipeline,
        lambda: pipeline.request_crawl(CLI_OWNER, base_url, max_depth, max_pages),
        _report,
        timeout,
    )


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
