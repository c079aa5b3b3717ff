"""
Playback commands sent to an audio output unit.
"""

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Play:
    """Start playback of ``source`` from the beginning."""

    source: str


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class SetVolume:
    """Set output gain; values are clamped to [0, 1]."""

    volume: float

    def __post_init__(self):
        object.__setattr__(self, "volume", clamp_volume(self.volume))


PlaybackCommand = Union[Play, Pause, Resume, SetVolume]


def clamp_volume(volume: float) -> float:
    """Clamp a volume value to [0.0, 1.0]."""
    return min(1.0, max(0.0, float(volume)))
