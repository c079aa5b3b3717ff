"""
Audio Output Module

One output unit decodes and plays a single page's narration.

Two backends share the same interface:

- ``SoundDeviceOutput`` plays through PortAudio via ``sounddevice``.
- ``ClockOutput`` opens no device and only keeps the playback clock. It is
  used on machines without a usable output device (servers, containers,
  CI) so highlighting still advances in real time.

Decoding always runs in a worker thread; nothing here blocks the event loop.
"""

import asyncio
import io
import os
import sys
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

import numpy as np
import requests
import soundfile as sf

from storyreader.exceptions import ConfigurationError
from storyreader.models import Page
from storyreader.readalong.commands import Pause, PlaybackCommand, Play, Resume, SetVolume
from storyreader.utils import logger
from storyreader.utils.config import config

_AUDIO_AVAILABLE: Optional[bool] = None
_DISABLE_VALUES = {"1", "true", "yes", "on"}
AUDIO_BACKENDS = ("auto", "sounddevice", "clock")


def _audio_disabled_by_env() -> bool:
    env_value = os.getenv("STORYREADER_DISABLE_AUDIO", "").strip().lower()
    if env_value in _DISABLE_VALUES:
        logger.info(f"Audio output disabled because STORYREADER_DISABLE_AUDIO={env_value}")
        return True
    return False


def _linux_has_audio_device() -> bool:
    if not sys.platform.startswith("linux"):
        return True
    snd_path = Path("/dev/snd")
    if not snd_path.exists():
        logger.info("Audio output disabled: /dev/snd does not exist on this system")
        return False
    if not any(snd_path.iterdir()):
        logger.info("Audio output disabled: no ALSA devices under /dev/snd")
        return False
    return True


def _import_sounddevice():
    # The module raises OSError at import time when the PortAudio
    # shared library is missing from the system.
    try:
        import sounddevice
    except OSError as e:
        logger.warning(f"Audio output disabled: PortAudio could not be loaded ({e})")
        return None
    return sounddevice


def audio_playback_available() -> bool:
    """Return True when a PortAudio output device can be opened."""
    global _AUDIO_AVAILABLE
    if _AUDIO_AVAILABLE is not None:
        return _AUDIO_AVAILABLE

    if _audio_disabled_by_env() or not _linux_has_audio_device():
        _AUDIO_AVAILABLE = False
        return False

    sd = _import_sounddevice()
    if sd is None:
        _AUDIO_AVAILABLE = False
        return False

    try:
        devices = sd.query_devices()
    except sd.PortAudioError as e:
        logger.warning(f"Audio output disabled: could not enumerate devices ({e})")
        _AUDIO_AVAILABLE = False
        return False

    _AUDIO_AVAILABLE = any(
        device.get("max_output_channels", 0) > 0 for device in devices
    )
    if not _AUDIO_AVAILABLE:
        logger.info("Audio output disabled: PortAudio found no output devices")
    return _AUDIO_AVAILABLE


def reset_audio_probe() -> None:
    """Forget the cached device probe result."""
    global _AUDIO_AVAILABLE
    _AUDIO_AVAILABLE = None


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def _open_source(source: str, timeout: float) -> Union[str, io.BytesIO]:
    """Return something soundfile can read: a local path or downloaded bytes."""
    if _is_url(source):
        response = requests.get(source, timeout=timeout)
        response.raise_for_status()
        return io.BytesIO(response.content)

    path = Path(source).expanduser()
    if not path.is_file():
        raise FileNotFoundError(f"Audio file not found: {path}")
    return str(path)


def decode_source(source: str, timeout: float = 30.0) -> Tuple[np.ndarray, int]:
    """
    Decode an audio file or URL to float32 frames.

    Args:
        source: Local path or http(s) URL
        timeout: Download timeout in seconds

    Returns:
        Tuple of (frames x channels array, sample rate)
    """
    data, sample_rate = sf.read(_open_source(source, timeout), dtype="float32", always_2d=True)
    if data.size == 0:
        raise ValueError(f"Audio contains no samples: {source}")
    return data, int(sample_rate)


def probe_duration_ms(source: str, timeout: float = 30.0) -> int:
    """Read the duration of an audio file from its header."""
    info = sf.info(_open_source(source, timeout))
    if info.samplerate <= 0 or info.frames <= 0:
        raise ValueError(f"Audio contains no samples: {source}")
    return int(info.frames * 1000 / info.samplerate)


class AudioOutput(ABC):
    """A decode/output unit bound to one audio source."""

    def __init__(self, source: str):
        self.source = source
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def prepare(self) -> int:
        """Load and decode the source. Returns the duration in milliseconds."""

    @abstractmethod
    def handle(self, command: PlaybackCommand) -> None:
        """Apply a transport command."""

    @abstractmethod
    def position_ms(self) -> int:
        """Current playback offset in milliseconds."""

    @abstractmethod
    def close(self) -> None:
        """Release device and buffers. Safe to call more than once."""


class SoundDeviceOutput(AudioOutput):
    """Plays decoded frames through a sounddevice output stream."""

    def __init__(self, source: str, blocksize: int = 1024, timeout: float = 30.0):
        super().__init__(source)
        self.blocksize = blocksize
        self.timeout = timeout
        self._data: Optional[np.ndarray] = None
        self._sample_rate = 0
        self._frame = 0
        # First frame written since the last Play or Resume
        self._started_frame = 0
        self._volume = 1.0
        self._stream = None
        self._sd = None

    async def prepare(self) -> int:
        data, sample_rate = await asyncio.to_thread(decode_source, self.source, self.timeout)
        if self._closed:
            return 0
        self._data = data
        self._sample_rate = sample_rate
        self._frame = 0
        return int(len(data) * 1000 / sample_rate)

    def handle(self, command: PlaybackCommand) -> None:
        if self._closed:
            return
        if isinstance(command, Play):
            self._open_stream()
            self._frame = 0
            self._started_frame = 0
            self._stream.start()
        elif isinstance(command, Pause):
            if self._stream is not None and self._stream.active:
                # abort() returns at once and drops queued blocks; the
                # unheard frames are rewound so Resume replays them.
                self._stream.abort()
                self._frame = self._heard_frame()
        elif isinstance(command, Resume):
            if self._stream is not None and not self._stream.active:
                self._started_frame = self._frame
                self._stream.start()
        elif isinstance(command, SetVolume):
            self._volume = command.volume
        else:
            raise TypeError(f"Unknown playback command: {command!r}")

    def _open_stream(self) -> None:
        if self._data is None:
            raise RuntimeError("prepare() must complete before playback")
        if self._stream is not None:
            self._stream.close()
        if self._sd is None:
            self._sd = _import_sounddevice()
            if self._sd is None:
                raise RuntimeError("PortAudio is not available")
        self._stream = self._sd.OutputStream(
            samplerate=self._sample_rate,
            channels=self._data.shape[1],
            dtype="float32",
            blocksize=self.blocksize,
            callback=self._callback,
        )

    def _callback(self, outdata, frames, time_info, status) -> None:
        # Runs on the PortAudio thread
        data = self._data
        if data is None:
            outdata.fill(0)
            raise self._sd.CallbackStop
        start = self._frame
        chunk = data[start:start + frames]
        count = len(chunk)
        if count:
            np.multiply(chunk, self._volume, out=outdata[:count])
        if count < frames:
            outdata[count:].fill(0)
        self._frame = start + count
        if count < frames:
            raise self._sd.CallbackStop

    def _heard_frame(self) -> int:
        """Last frame that reached the speaker, allowing for output latency."""
        latency = int(getattr(self._stream, "latency", 0) * self._sample_rate)
        return max(self._started_frame, self._frame - latency)

    def position_ms(self) -> int:
        if not self._sample_rate:
            return 0
        frame = self._frame
        if self._stream is not None and self._stream.active:
            frame = self._heard_frame()
        return int(frame * 1000 / self._sample_rate)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        stream, self._stream = self._stream, None
        self._data = None
        if stream is not None:
            try:
                stream.abort()
            finally:
                stream.close()


class ClockOutput(AudioOutput):
    """
    Keeps playback time without opening an audio device.

    The duration comes from the audio file itself, so a missing or
    unreadable source still fails in ``prepare`` exactly as it would with
    a real device.
    """

    def __init__(
        self,
        source: str,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(source)
        self.timeout = timeout
        self._clock = clock
        self._duration_ms = 0
        self._elapsed = 0.0
        self._started_at: Optional[float] = None
        self.volume = 1.0

    async def prepare(self) -> int:
        self._duration_ms = await asyncio.to_thread(probe_duration_ms, self.source, self.timeout)
        return self._duration_ms

    def handle(self, command: PlaybackCommand) -> None:
        if self._closed:
            return
        if isinstance(command, Play):
            self._elapsed = 0.0
            self._started_at = self._clock()
        elif isinstance(command, Pause):
            if self._started_at is not None:
                self._elapsed += self._clock() - self._started_at
                self._started_at = None
        elif isinstance(command, Resume):
            if self._started_at is None:
                self._started_at = self._clock()
        elif isinstance(command, SetVolume):
            self.volume = command.volume
        else:
            raise TypeError(f"Unknown playback command: {command!r}")

    def position_ms(self) -> int:
        elapsed = self._elapsed
        if self._started_at is not None:
            elapsed += self._clock() - self._started_at
        return min(self._duration_ms, int(elapsed * 1000))

    def close(self) -> None:
        self._closed = True
        self._started_at = None


def create_output(page: Page) -> AudioOutput:
    """Build the output unit for a page according to ``audio.backend``."""
    backend = config.audio_backend
    if backend not in AUDIO_BACKENDS:
        raise ConfigurationError(f"Unknown audio backend: {backend}")

    if backend == "clock" or (backend == "auto" and not audio_playback_available()):
        return ClockOutput(page.audio_ref, timeout=config.download_timeout)
    return SoundDeviceOutput(
        page.audio_ref,
        blocksize=config.audio_blocksize,
        timeout=config.download_timeout,
    )
