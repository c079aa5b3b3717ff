#!/usr/bin/env python3
"""
StoryReader - Main CLI

Read-along player for illustrated, narrated articles.

Features:
- Word-by-word highlighting synchronized with the page narration
- Articles from the content API, a URL, or a saved JSON file
- Sound card output, or a silent clock on headless machines
- Page inspection to check word timings against transcripts
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from storyreader import __version__
from storyreader.exceptions import ArticleLoadError, ConfigurationError
from storyreader.loader import ArticleLoader
from storyreader.models import Article, Page
from storyreader.readalong.audio import AUDIO_BACKENDS
from storyreader.readalong.coordinator import PagePlaybackCoordinator
from storyreader.readalong.listener import PlaybackListener
from storyreader.readalong.session import PlaybackState
from storyreader.readalong.word_index import WordIndex
from storyreader.utils import logger
from storyreader.utils.config import config

# Seconds a page without narration stays on screen before auto-advance
SILENT_PAGE_SECONDS = 2.0
CHECK_INTERVAL = 0.1


class LiveDisplay(PlaybackListener):
    """Renders the active page with its current word highlighted."""

    def __init__(self, article: Article):
        self.article = article
        self.page: Optional[Page] = None
        self.span: Optional[Tuple[int, int]] = None
        self.state = PlaybackState.IDLE
        self.current = 0
        self.volume = config.default_volume
        self.live: Optional[Live] = None

    def on_progress(self, current_page_number: int, total_pages: int) -> None:
        self.current = current_page_number
        self.refresh()

    def on_highlight(self, page, word_index, span) -> None:
        self.page = page
        self.span = span
        self.refresh()

    def on_playback_state(self, page_index: int, state: PlaybackState) -> None:
        if self.page is not None and page_index != self.page.index:
            return
        self.state = state
        self.refresh()

    def on_volume(self, volume: float) -> None:
        self.volume = volume
        self.refresh()

    def on_message(self, text: str) -> None:
        logger.warning(text)

    def render(self) -> Panel:
        body = Text()
        if self.page is not None:
            transcript = self.page.transcript
            if self.span is None:
                body.append(transcript)
            else:
                start, end = self.span
                body.append(transcript[:start])
                body.append(transcript[start:end], style="reverse magenta")
                body.append(transcript[end:])
        status = (
            f"Page {self.current}/{len(self.article)} · "
            f"{self.state.value} · volume {round(self.volume * 100)}%"
        )
        return Panel(body, title=f"[bold]{self.article.title}[/bold]", subtitle=status)

    def refresh(self) -> None:
        if self.live is not None:
            self.live.update(self.render())


def _load_article(source: str) -> Article:
    try:
        return ArticleLoader().load(source)
    except ArticleLoadError as e:
        logger.error(str(e))
        sys.exit(1)


def _playback_finished(coordinator: PagePlaybackCoordinator, auto_advance: bool) -> bool:
    page = coordinator.active_page
    if page is None:
        return True
    state = coordinator.playback_state
    last_page = page.index + 1 >= len(coordinator.article)
    if state is PlaybackState.FAILED:
        return True
    if state is PlaybackState.COMPLETED or (state is PlaybackState.IDLE and coordinator.session is None):
        return not auto_advance or last_page
    return False


async def _play(article: Article, start_page: int, volume: Optional[float], auto_advance: bool) -> None:
    display = LiveDisplay(article)
    coordinator = PagePlaybackCoordinator(display, volume=volume, auto_advance=auto_advance)
    display.volume = coordinator.volume

    with Live(display.render(), console=logger.console, refresh_per_second=20) as live:
        display.live = live
        try:
            coordinator.load_article(article, start_page=start_page)
            silent_since = None
            loop = asyncio.get_running_loop()
            while not _playback_finished(coordinator, auto_advance):
                await asyncio.sleep(CHECK_INTERVAL)
                page = coordinator.active_page
                if coordinator.session is not None or page is None:
                    silent_since = None
                    continue
                # Page without narration: hold it briefly, then move on
                if silent_since is None:
                    silent_since = loop.time()
                elif loop.time() - silent_since >= SILENT_PAGE_SECONDS:
                    silent_since = None
                    coordinator.on_page_selected(page.index + 1)
        finally:
            coordinator.shutdown()
            await coordinator.wait_idle()


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", is_flag=True, help="Show debug output")
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Settings file (default: config/settings.yaml)",
)
def cli(verbose: bool, config_path: Optional[str]):
    """
    StoryReader

    Play illustrated, narrated articles with word-by-word highlighting.
    """
    logger.set_verbose(verbose)
    if config_path:
        try:
            config.reload(Path(config_path))
        except ConfigurationError as e:
            logger.error(str(e))
            sys.exit(1)


@cli.command()
@click.argument("source")
@click.option("-p", "--page", default=1, show_default=True, type=click.IntRange(min=1), help="Page to start on")
@click.option(
    "--volume",
    type=click.IntRange(0, 100),
    default=None,
    help="Starting volume 0-100 (default: playback.default_volume)",
)
@click.option(
    "--auto-advance/--no-auto-advance",
    default=False,
    show_default=True,
    help="Continue to the next page when a page finishes",
)
@click.option(
    "--backend",
    type=click.Choice(AUDIO_BACKENDS),
    default=None,
    help=f"Audio output (default: {config.audio_backend})",
)
def play(source: str, page: int, volume: Optional[int], auto_advance: bool, backend: Optional[str]):
    """
    Play an article with live word highlighting.

    SOURCE is a saved article JSON file, an article id, or a URL.
    """
    if backend:
        config.set("audio", "backend", value=backend)
    if config.audio_backend not in AUDIO_BACKENDS:
        logger.error(
            f"Unknown audio backend: {config.audio_backend} "
            f"(expected one of: {', '.join(AUDIO_BACKENDS)})"
        )
        sys.exit(1)

    article = _load_article(source)
    if not article.pages:
        logger.error("This article has no pages")
        sys.exit(1)
    if page > len(article):
        logger.error(f"Page {page} out of range (article has {len(article)} pages)")
        sys.exit(1)

    logger.header(article.title)
    try:
        asyncio.run(_play(
            article,
            start_page=page - 1,
            volume=None if volume is None else volume / 100,
            auto_advance=auto_advance,
        ))
    except KeyboardInterrupt:
        logger.info("Stopped")
        return
    logger.success("Playback finished")


@cli.command()
@click.argument("source")
def inspect(source: str):
    """
    Show the pages of an article and check word timings.

    SOURCE is a saved article JSON file, an article id, or a URL.
    """
    article = _load_article(source)
    logger.header(f"Article: {article.title}")

    table = Table(show_header=True, header_style="bold")
    table.add_column("Page", justify="right")
    table.add_column("Audio")
    table.add_column("Duration", justify="right")
    table.add_column("Words", justify="right")
    table.add_column("Aligned")
    table.add_column("Transcript", overflow="ellipsis", no_wrap=True, max_width=48)

    unaligned = 0
    for page in article.pages:
        duration = "-"
        if page.declared_duration_ms is not None:
            duration = f"{page.declared_duration_ms / 1000:.1f}s"
        if page.words:
            aligned = WordIndex(page.words, page.transcript).aligned
            unaligned += not aligned
            aligned_label = "[success]yes[/success]" if aligned else "[warning]no[/warning]"
        else:
            aligned_label = "-"
        table.add_row(
            str(page.page_number if page.page_number is not None else page.index + 1),
            "[success]✓[/success]" if page.has_audio else "[dim]none[/dim]",
            duration,
            str(len(page.words)),
            aligned_label,
            page.transcript,
        )

    logger.console.print(table)
    logger.info(f"Pages: {len(article)}")
    if unaligned:
        logger.warning(f"{unaligned} page(s) will play without highlighting")


@cli.command()
@click.argument("article_id")
@click.option("-o", "--output", type=click.Path(dir_okay=False), required=True, help="Output JSON file")
def fetch(article_id: str, output: str):
    """Download an article and save it as JSON."""
    loader = ArticleLoader()
    logger.step(f"Fetching article {article_id}")
    try:
        article = loader.save(article_id, output)
    except ArticleLoadError as e:
        logger.error(str(e))
        sys.exit(1)
    logger.success(f"Saved {article.title!r} ({len(article)} pages) to: {output}")


if __name__ == "__main__":
    cli()
