"""
Page Playback Coordinator Module

The single entry point the display layer talks to. It owns at most one
playback session and one poller, and turns page, transport, volume and
overlay events into session changes and listener callbacks.

All methods must be called from the thread running the asyncio loop.
Audio preparation runs as a task on that loop; when it finishes, the
result is applied only if its session is still the active one.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Dict, Optional, Set

from storyreader.exceptions import (
    ConfigurationError,
    MediaUnavailable,
    PrepareFailed,
    StoryReaderError,
)
from storyreader.models import Article, Page
from storyreader.readalong.audio import create_output
from storyreader.readalong.commands import clamp_volume
from storyreader.readalong.listener import PlaybackListener
from storyreader.readalong.poller import PositionPoller
from storyreader.readalong.session import OutputFactory, PlaybackSession, PlaybackState
from storyreader.readalong.word_index import WordIndex
from storyreader.utils import logger
from storyreader.utils.config import config


@dataclass(frozen=True)
class HighlightState:
    page_index: Optional[int] = None
    word_index: Optional[int] = None


@dataclass(frozen=True)
class VolumeOverlayState:
    visible_page_index: Optional[int] = None


class PagePlaybackCoordinator:
    """Keeps exactly one page's audio alive and its transcript highlighted."""

    def __init__(
        self,
        listener: Optional[PlaybackListener] = None,
        output_factory: OutputFactory = create_output,
        volume: Optional[float] = None,
        auto_advance: bool = False,
        poll_interval_ms: Optional[int] = None,
    ):
        self.listener = listener or PlaybackListener()
        self.auto_advance = auto_advance
        self._output_factory = output_factory
        self._poll_interval_ms = poll_interval_ms
        self._volume = clamp_volume(config.default_volume if volume is None else volume)

        self._article: Optional[Article] = None
        self._word_indexes: Dict[int, WordIndex] = {}
        self._active_page_index: Optional[int] = None
        self._session: Optional[PlaybackSession] = None
        # State of the active page while it has no session
        self._page_state = PlaybackState.IDLE
        self._poller: Optional[PositionPoller] = None
        self._highlight = HighlightState()
        self._overlay = VolumeOverlayState()
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def article(self) -> Optional[Article]:
        return self._article

    @property
    def active_page_index(self) -> Optional[int]:
        return self._active_page_index

    @property
    def active_page(self) -> Optional[Page]:
        if self._article is None or self._active_page_index is None:
            return None
        return self._article.pages[self._active_page_index]

    @property
    def session(self) -> Optional[PlaybackSession]:
        return self._session

    @property
    def poller(self) -> Optional[PositionPoller]:
        return self._poller

    @property
    def highlight(self) -> HighlightState:
        return self._highlight

    @property
    def overlay(self) -> VolumeOverlayState:
        return self._overlay

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def volume_progress(self) -> int:
        """Current volume on the slider's 0-100 scale."""
        return int(round(self._volume * 100))

    @property
    def playback_state(self) -> PlaybackState:
        if self._session is None:
            return self._page_state
        return self._session.state

    def word_index(self, page_index: int) -> WordIndex:
        """Word index for a page of the current article, built on first use."""
        if self._article is None:
            raise StoryReaderError("No article loaded")
        index = self._word_indexes.get(page_index)
        if index is None:
            page = self._article.pages[page_index]
            index = WordIndex(page.words, page.transcript)
            self._word_indexes[page_index] = index
        return index

    # ------------------------------------------------------------------
    # Article lifecycle
    # ------------------------------------------------------------------

    def load_article(self, article: Article, start_page: int = 0) -> None:
        """Replace the current article and start playing ``start_page``."""
        self.shutdown()
        self._article = article
        self._word_indexes = {}
        logger.debug(f"Loaded article {article.title!r} ({len(article)} pages)")
        self._notify("on_article_loaded", article)

        if not article.pages:
            self._notify("on_message", "This article has no pages")
            return
        self.on_page_selected(start_page)

    def report_load_failure(self, message: str) -> None:
        """Show an article loader failure to the user."""
        logger.debug(f"Article load failed: {message}")
        self._notify("on_message", message)

    def shutdown(self) -> None:
        """Release playback and clear transient state. Safe to call repeatedly."""
        self._teardown()
        self._active_page_index = None
        self._highlight = HighlightState()
        self._overlay = VolumeOverlayState()

    async def wait_idle(self) -> None:
        """Wait until no audio preparation is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # User events
    # ------------------------------------------------------------------

    def on_page_selected(self, new_index: int) -> None:
        if self._article is None:
            raise StoryReaderError("No article loaded")
        if not 0 <= new_index < len(self._article):
            raise IndexError(f"Page {new_index} out of range (0-{len(self._article) - 1})")
        if new_index == self._active_page_index:
            return

        previous = self._active_page_index
        self._teardown()
        if previous is not None:
            self._notify("on_playback_state", previous, PlaybackState.IDLE)

        self._active_page_index = new_index
        self._set_highlight(HighlightState(new_index, None))
        self._hide_overlay()
        self._notify("on_progress", new_index + 1, len(self._article))
        self._launch(self._article.pages[new_index])

    def on_pause_toggle(self) -> None:
        session = self._session
        if session is None:
            return
        if session.state is PlaybackState.PLAYING:
            session.pause()
            self._cancel_poller()
            self._notify("on_playback_state", session.page.index, PlaybackState.PAUSED)
        elif session.state is PlaybackState.PAUSED:
            session.resume()
            self._notify("on_playback_state", session.page.index, PlaybackState.PLAYING)
            self._start_poller(session)

    def on_replay(self) -> None:
        page = self.active_page
        if page is None:
            return
        self._teardown()
        self._set_highlight(HighlightState(page.index, None))
        self._launch(page)

    def on_volume_changed(self, volume: float) -> None:
        self._volume = clamp_volume(volume)
        if self._session is not None:
            self._session.set_volume(self._volume)
        self._notify("on_volume", self._volume)

    def on_volume_progress(self, progress: int) -> None:
        """Slider input on the 0-100 scale."""
        self.on_volume_changed(min(100, max(0, int(progress))) / 100)

    def on_volume_overlay_toggle(self, page_index: int) -> None:
        if self._overlay.visible_page_index == page_index:
            visible = None
        else:
            visible = page_index
        self._overlay = VolumeOverlayState(visible)
        self._notify("on_overlay", visible)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _launch(self, page: Page) -> None:
        loop = asyncio.get_running_loop()
        try:
            session = PlaybackSession.create(page, self._volume, self._output_factory)
        except MediaUnavailable:
            logger.debug(f"Page {page.index + 1} has no audio")
            self._notify("on_playback_state", page.index, PlaybackState.IDLE)
            return
        except ConfigurationError as e:
            logger.error(str(e))
            self._page_state = PlaybackState.FAILED
            self._notify("on_playback_state", page.index, PlaybackState.FAILED)
            self._notify("on_message", str(e))
            return

        self._session = session
        preparing = session.start()
        self._notify("on_playback_state", page.index, PlaybackState.PREPARING)
        task = loop.create_task(self._finish_start(session, preparing))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _finish_start(self, session: PlaybackSession, preparing: Awaitable[None]) -> None:
        try:
            await preparing
        except PrepareFailed as e:
            if session is not self._session:
                return
            logger.warning(str(e))
            self._notify("on_playback_state", session.page.index, PlaybackState.FAILED)
            self._notify("on_message", str(e))
            return

        if session is not self._session or session.state is not PlaybackState.PLAYING:
            logger.debug(f"Discarding stale start of session #{session.session_id}")
            return
        self._notify("on_playback_state", session.page.index, PlaybackState.PLAYING)
        self._start_poller(session)

    def _start_poller(self, session: PlaybackSession) -> None:
        self._cancel_poller()
        self._poller = PositionPoller(
            session,
            self.word_index(session.page.index),
            on_highlight=lambda word: self._on_word(session, word),
            on_complete=lambda: self._on_complete(session),
            is_current=lambda: session is self._session,
            interval_ms=self._poll_interval_ms,
            initial_word_index=self._highlight.word_index,
        )
        self._poller.start()

    def _cancel_poller(self) -> None:
        poller, self._poller = self._poller, None
        if poller is not None:
            poller.cancel()

    def _teardown(self) -> None:
        self._cancel_poller()
        self._page_state = PlaybackState.IDLE
        session, self._session = self._session, None
        if session is not None:
            session.release()

    def _on_word(self, session: PlaybackSession, word: Optional[int]) -> None:
        if session is not self._session:
            return
        self._set_highlight(HighlightState(session.page.index, word))

    def _on_complete(self, session: PlaybackSession) -> None:
        if session is not self._session:
            return
        self._cancel_poller()
        self._notify("on_playback_state", session.page.index, PlaybackState.COMPLETED)
        if self.auto_advance:
            asyncio.get_running_loop().call_soon(self._advance_after, session)

    def _advance_after(self, session: PlaybackSession) -> None:
        if session is not self._session or self._article is None:
            return
        next_index = session.page.index + 1
        if next_index < len(self._article):
            self.on_page_selected(next_index)

    def _set_highlight(self, state: HighlightState) -> None:
        self._highlight = state
        if state.page_index is None or self._article is None:
            return
        page = self._article.pages[state.page_index]
        span = self.word_index(state.page_index).span(state.word_index)
        self._notify("on_highlight", page, state.word_index, span)

    def _hide_overlay(self) -> None:
        if self._overlay.visible_page_index is not None:
            self._overlay = VolumeOverlayState()
            self._notify("on_overlay", None)

    def _notify(self, hook: str, *args) -> None:
        callback = getattr(self.listener, hook, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Listener {hook} failed: {e}")
