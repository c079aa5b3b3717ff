"""
Read-Along Module

Synchronized page playback: one audio session per page, a poller that
samples its position, and a word index that maps position to the word
being spoken.
"""

from storyreader.readalong.commands import Pause, Play, PlaybackCommand, Resume, SetVolume
from storyreader.readalong.coordinator import (
    HighlightState,
    PagePlaybackCoordinator,
    VolumeOverlayState,
)
from storyreader.readalong.listener import PlaybackListener
from storyreader.readalong.poller import PositionPoller
from storyreader.readalong.session import PlaybackSession, PlaybackState
from storyreader.readalong.word_index import WordIndex, resolve_word

__all__ = [
    "Play",
    "Pause",
    "Resume",
    "SetVolume",
    "PlaybackCommand",
    "HighlightState",
    "PagePlaybackCoordinator",
    "VolumeOverlayState",
    "PlaybackListener",
    "PositionPoller",
    "PlaybackSession",
    "PlaybackState",
    "WordIndex",
    "resolve_word",
]
