"""
Playback Session Module

A session owns the audio output unit for exactly one page and drives it
through the transport state machine:

    IDLE -> PREPARING -> PLAYING <-> PAUSED
                         PLAYING -> COMPLETED
    any state -> FAILED on a load/decode error
    any state -> released (terminal)

FAILED and COMPLETED are terminal for the instance; replaying a page means
creating a new session.
"""

import itertools
from enum import Enum
from typing import Awaitable, Callable, Optional

from storyreader.exceptions import (
    InvalidTransition,
    MediaUnavailable,
    PrepareFailed,
    SessionClosed,
)
from storyreader.models import Page
from storyreader.readalong.audio import AudioOutput, create_output
from storyreader.readalong.commands import Pause, Play, Resume, SetVolume, clamp_volume
from storyreader.utils import logger

OutputFactory = Callable[[Page], AudioOutput]

_session_ids = itertools.count(1)


class PlaybackState(Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    PLAYING = "playing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PlaybackState.COMPLETED, PlaybackState.FAILED)


class PlaybackSession:
    """One live audio playback instance bound to one page."""

    def __init__(self, page: Page, output: AudioOutput, volume: float = 1.0):
        self.page = page
        self.session_id = next(_session_ids)
        self._output = output
        self._state = PlaybackState.IDLE
        self._volume = clamp_volume(volume)
        self._duration_ms = 0
        self._position_ms = 0
        self._released = False

    @classmethod
    def create(
        cls,
        page: Page,
        volume: float = 1.0,
        output_factory: Optional[OutputFactory] = None,
    ) -> "PlaybackSession":
        """
        Create a session for a page.

        Raises:
            MediaUnavailable: The page has no audio
        """
        if not page.audio_ref:
            raise MediaUnavailable(f"Page {page.index + 1} has no audio")
        factory = output_factory or create_output
        return cls(page, factory(page), volume)

    def __repr__(self) -> str:
        return (
            f"<PlaybackSession #{self.session_id} page={self.page.index} "
            f"state={self._state.value}{' released' if self._released else ''}>"
        )

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def released(self) -> bool:
        return self._released

    def _check_open(self) -> None:
        if self._released:
            raise SessionClosed(f"Session #{self.session_id} has been released")

    def start(self) -> Awaitable[None]:
        """
        Move to PREPARING and return an awaitable that loads the audio and
        begins playback.

        A session starts once. Calling this again in any later state,
        PREPARING included, raises InvalidTransition; replaying a page takes
        a new session.

        If the session is released before loading finishes, the result is
        dropped and the session stays released.

        Awaiting the result raises:
            PrepareFailed: Loading, decoding or opening the device failed
        """
        self._check_open()
        if self._state is not PlaybackState.IDLE:
            raise InvalidTransition(f"Cannot start a session in state {self._state.value}")

        self._state = PlaybackState.PREPARING
        logger.debug(f"Preparing page {self.page.index + 1}: {self.page.audio_ref}")
        return self._prepare()

    async def _prepare(self) -> None:
        if self._released:
            return
        try:
            duration_ms = await self._output.prepare()
            if self._released:
                logger.debug(f"Session #{self.session_id} released during prepare; result dropped")
                return
            self._duration_ms = max(0, int(duration_ms))
            self._output.handle(SetVolume(self._volume))
            self._output.handle(Play(self.page.audio_ref))
        except Exception as e:
            if self._released:
                logger.debug(f"Session #{self.session_id} released during prepare; error dropped ({e})")
                return
            self._state = PlaybackState.FAILED
            raise PrepareFailed(f"Could not play audio for page {self.page.index + 1}: {e}") from e

        self._state = PlaybackState.PLAYING
        logger.debug(f"Page {self.page.index + 1} playing ({self._duration_ms} ms)")

    def pause(self) -> None:
        """Pause playback. Pausing an already paused session does nothing."""
        self._check_open()
        if self._state is PlaybackState.PAUSED:
            return
        if self._state is not PlaybackState.PLAYING:
            raise InvalidTransition(f"Cannot pause a session in state {self._state.value}")
        self._position_ms = self._sample()
        self._output.handle(Pause())
        self._state = PlaybackState.PAUSED

    def resume(self) -> None:
        self._check_open()
        if self._state is not PlaybackState.PAUSED:
            raise InvalidTransition(f"Cannot resume a session in state {self._state.value}")
        self._output.handle(Resume())
        self._state = PlaybackState.PLAYING

    def set_volume(self, volume: float) -> None:
        """
        Set the output volume, clamped to [0, 1].

        Before the output is ready the value is kept and applied when
        playback starts. In a terminal state it is only recorded.
        """
        self._check_open()
        self._volume = clamp_volume(volume)
        if self._state in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            self._output.handle(SetVolume(self._volume))

    def _sample(self) -> int:
        position = min(self._output.position_ms(), self._duration_ms)
        # Never report a position earlier than one already reported
        self._position_ms = max(self._position_ms, position)
        return self._position_ms

    def position_ms(self) -> int:
        """Current playback offset. 0 until prepared, frozen while paused."""
        self._check_open()
        if self._state is PlaybackState.PLAYING:
            return self._sample()
        if self._state is PlaybackState.COMPLETED:
            return self._duration_ms
        if self._state is PlaybackState.PAUSED:
            return self._position_ms
        return 0

    def duration_ms(self) -> int:
        self._check_open()
        return self._duration_ms

    def is_complete(self) -> bool:
        """
        True once the position has reached the duration.

        The first call that observes the end moves the session to
        COMPLETED.
        """
        self._check_open()
        if self._state is PlaybackState.COMPLETED:
            return True
        if self._state is not PlaybackState.PLAYING or self._duration_ms <= 0:
            return False
        if self._sample() >= self._duration_ms:
            self._state = PlaybackState.COMPLETED
            logger.debug(f"Page {self.page.index + 1} finished")
            return True
        return False

    def release(self) -> None:
        """Release the audio output. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        try:
            self._output.close()
        except Exception as e:
            logger.warning(f"Could not release audio for page {self.page.index + 1}: {e}")
