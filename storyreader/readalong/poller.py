"""
Position Poller Module

A repeating asyncio task that samples the playing session and reports
word changes. One poller is bound to one session; a cancelled poller
never reports again, even if a tick was already scheduled.
"""

import asyncio
from typing import Callable, Optional

from storyreader.readalong.session import PlaybackSession, PlaybackState
from storyreader.readalong.word_index import WordIndex
from storyreader.utils import logger
from storyreader.utils.config import config


class PositionPoller:
    """Drives highlight updates for one playback session."""

    def __init__(
        self,
        session: PlaybackSession,
        word_index: WordIndex,
        on_highlight: Callable[[Optional[int]], None],
        on_complete: Optional[Callable[[], None]] = None,
        is_current: Optional[Callable[[], bool]] = None,
        interval_ms: Optional[int] = None,
        initial_word_index: Optional[int] = None,
    ):
        """
        Args:
            session: Session to sample
            word_index: Word index of the session's page
            on_highlight: Called with the new word index (or None) on change
            on_complete: Called once when the session reaches its end
            is_current: Returns False once the session has been superseded
            interval_ms: Tick interval (default from config)
            initial_word_index: Word already highlighted, so resuming does
                not report it again
        """
        self.session = session
        self.word_index = word_index
        self._on_highlight = on_highlight
        self._on_complete = on_complete
        self._is_current = is_current or (lambda: True)
        self.interval_ms = interval_ms if interval_ms is not None else config.poll_interval_ms
        self._word = initial_word_index
        self._active = True
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def word(self) -> Optional[int]:
        """Word index reported most recently."""
        return self._word

    def start(self) -> asyncio.Task:
        """Schedule the repeating task on the running loop."""
        if self._task is not None:
            return self._task
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def _run(self) -> None:
        interval = self.interval_ms / 1000
        while self.tick():
            await asyncio.sleep(interval)

    def tick(self) -> bool:
        """
        Run one poll step.

        Returns:
            True if another tick should be scheduled
        """
        if not self._active:
            return False
        session = self.session
        if session.released or not self._is_current():
            logger.debug(f"Poller for session #{session.session_id} discarded")
            self._active = False
            return False
        if session.state is not PlaybackState.PLAYING:
            self._active = False
            return False

        position = session.position_ms()
        if session.is_complete():
            self._active = False
            self._report(None)
            if self._on_complete is not None:
                self._on_complete()
            return False

        self._report(self.word_index.resolve(position))
        return True

    def _report(self, word: Optional[int]) -> None:
        if word != self._word:
            self._word = word
            self._on_highlight(word)

    def cancel(self) -> None:
        """Stop the poller. Safe to call more than once."""
        self._active = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
