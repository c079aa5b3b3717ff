import asyncio
from typing import List, Optional

import numpy as np
import pytest
import soundfile as sf

from storyreader.models import Article, Page, Word
from storyreader.readalong.audio import AudioOutput
from storyreader.readalong.listener import PlaybackListener
from storyreader.utils.config import config


class FakeOutput(AudioOutput):
    """Output unit whose position, prepare result and failures are set by the test."""

    def __init__(self, source: str, duration_ms: int = 2000, fail: Optional[Exception] = None):
        super().__init__(source)
        self.duration_ms = duration_ms
        self.fail = fail
        self.position = 0
        self.commands: List = []
        self.close_calls = 0
        self.close_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def prepare(self) -> int:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise self.fail
        return self.duration_ms

    def handle(self, command) -> None:
        self.commands.append(command)

    def position_ms(self) -> int:
        return self.position

    def close(self) -> None:
        self.close_calls += 1
        self._closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeOutputFactory:
    """Builds FakeOutputs and remembers them in creation order."""

    def __init__(self):
        self.outputs: List[FakeOutput] = []
        self.hold = False
        self.fail: Optional[Exception] = None
        self.duration_ms = 2000

    def __call__(self, page: Page) -> FakeOutput:
        output = FakeOutput(page.audio_ref, duration_ms=self.duration_ms, fail=self.fail)
        if self.hold:
            output.gate = asyncio.Event()
        self.outputs.append(output)
        return output

    @property
    def last(self) -> FakeOutput:
        return self.outputs[-1]


class RecordingListener(PlaybackListener):
    def __init__(self):
        self.events = []

    def on_article_loaded(self, article):
        self.events.append(("article", article.title))

    def on_progress(self, current_page_number, total_pages):
        self.events.append(("progress", current_page_number, total_pages))

    def on_highlight(self, page, word_index, span):
        self.events.append(("highlight", page.index, word_index, span))

    def on_playback_state(self, page_index, state):
        self.events.append(("state", page_index, state))

    def on_overlay(self, visible_page_index):
        self.events.append(("overlay", visible_page_index))

    def on_volume(self, volume):
        self.events.append(("volume", volume))

    def on_message(self, text):
        self.events.append(("message", text))

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


def make_page(index: int, audio: Optional[str] = "page.mp3") -> Page:
    return Page(
        index=index,
        image_ref=f"page{index}.png",
        audio_ref=audio,
        transcript="Hello world, again.",
        words=(
            Word("Hello", 0, 499),
            Word("world", 500, 999),
            Word("again", 1200, 1800),
        ),
    )


@pytest.fixture
def article():
    return Article(
        title="Sample story",
        pages=(
            make_page(0, "page0.mp3"),
            make_page(1, "page1.mp3"),
            make_page(2, None),
        ),
    )


@pytest.fixture
def output_factory():
    return FakeOutputFactory()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def restore_config():
    yield config
    config.reload()


@pytest.fixture
def wav_file(tmp_path):
    """A 0.5 second mono wav file."""
    path = tmp_path / "tone.wav"
    samples = np.zeros(8000, dtype=np.float32)
    sf.write(str(path), samples, 16000)
    return path


@pytest.fixture
def sample_article_json():
    return {
        "code": 0,
        "msg": "ok",
        "data": {
            "id": 42,
            "title": "The Little Seed",
            "cover": "/img/cover.png",
            "contentList": [
                {
                    "pageNum": 1,
                    "imgUrl": "/img/p1.png",
                    "audioUrl": "/audio/p1.mp3",
                    "audioDuration": 3,
                    "sentence": "A seed fell.",
                    "sentenceByXFList": [
                        {"word": "A", "wb": 0, "we": 200},
                        {"word": "seed", "wb": 210, "we": 700},
                        {"word": "fell", "wb": 720, "we": 1400},
                    ],
                },
                {
                    "pageNum": 2,
                    "imgUrl": "/img/p2.png",
                    "audioUrl": "",
                    "audioDuration": None,
                    "sentence": "The end",
                    "sentenceByXFList": [],
                },
            ],
        },
    }
