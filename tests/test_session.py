import asyncio

import pytest

from conftest import FakeOutput, make_page
from storyreader.exceptions import (
    InvalidTransition,
    MediaUnavailable,
    PrepareFailed,
    SessionClosed,
)
from storyreader.readalong.commands import Pause, Play, Resume, SetVolume
from storyreader.readalong.session import PlaybackSession, PlaybackState


def _playing_session(duration_ms: int = 2000, volume: float = 1.0):
    output = FakeOutput("page.mp3", duration_ms=duration_ms)
    session = PlaybackSession(make_page(0), output, volume)
    asyncio.run(session.start())
    return session, output


def test_create_without_audio_raises_media_unavailable() -> None:
    with pytest.raises(MediaUnavailable):
        PlaybackSession.create(make_page(0, audio=None))


def test_create_uses_output_factory() -> None:
    built = []

    def factory(page):
        built.append(page.index)
        return FakeOutput(page.audio_ref)

    session = PlaybackSession.create(make_page(3, "p3.mp3"), 0.5, factory)
    assert built == [3]
    assert session.state is PlaybackState.IDLE
    assert session.volume == 0.5


def test_start_prepares_then_plays() -> None:
    output = FakeOutput("page.mp3", duration_ms=1500)
    session = PlaybackSession(make_page(0), output, volume=0.3)

    async def scenario():
        output.gate = asyncio.Event()
        task = asyncio.create_task(session.start())
        await asyncio.sleep(0)
        assert session.state is PlaybackState.PREPARING
        assert session.position_ms() == 0
        assert session.duration_ms() == 0
        output.gate.set()
        await task

    asyncio.run(scenario())
    assert session.state is PlaybackState.PLAYING
    assert session.duration_ms() == 1500
    assert output.commands == [SetVolume(0.3), Play("page.mp3")]


def test_prepare_failure_marks_failed() -> None:
    output = FakeOutput("page.mp3", fail=OSError("decoder exploded"))
    session = PlaybackSession(make_page(0), output)

    with pytest.raises(PrepareFailed, match="decoder exploded"):
        asyncio.run(session.start())
    assert session.state is PlaybackState.FAILED
    assert output.commands == []


def test_release_during_prepare_drops_result() -> None:
    output = FakeOutput("page.mp3")
    session = PlaybackSession(make_page(0), output)

    async def scenario():
        output.gate = asyncio.Event()
        task = asyncio.create_task(session.start())
        await asyncio.sleep(0)
        session.release()
        output.gate.set()
        await task

    asyncio.run(scenario())
    assert session.released
    assert session.state is PlaybackState.PREPARING
    assert output.commands == []


def test_pause_and_resume() -> None:
    session, output = _playing_session()
    output.position = 700

    session.pause()
    assert session.state is PlaybackState.PAUSED
    session.pause()
    assert session.state is PlaybackState.PAUSED

    session.resume()
    assert session.state is PlaybackState.PLAYING
    assert output.commands[-2:] == [Pause(), Resume()]


def test_position_frozen_while_paused() -> None:
    session, output = _playing_session()
    output.position = 640
    session.pause()

    output.position = 900
    assert session.position_ms() == 640

    session.resume()
    output.position = 640
    assert session.position_ms() == 640


def test_invalid_transitions() -> None:
    session, _ = _playing_session()
    with pytest.raises(InvalidTransition):
        session.resume()

    idle = PlaybackSession(make_page(0), FakeOutput("page.mp3"))
    with pytest.raises(InvalidTransition):
        idle.pause()


def test_start_is_single_shot() -> None:
    output = FakeOutput("page.mp3")
    session = PlaybackSession(make_page(0), output)

    async def scenario():
        output.gate = asyncio.Event()
        preparing = session.start()
        with pytest.raises(InvalidTransition):
            session.start()
        output.gate.set()
        await preparing
        with pytest.raises(InvalidTransition):
            session.start()

    asyncio.run(scenario())
    assert session.state is PlaybackState.PLAYING
    assert output.commands.count(Play("page.mp3")) == 1


def test_position_never_goes_backwards() -> None:
    session, output = _playing_session()
    output.position = 800
    assert session.position_ms() == 800
    output.position = 300
    assert session.position_ms() == 800


def test_completion_is_detected_once_position_reaches_duration() -> None:
    session, output = _playing_session(duration_ms=1000)
    output.position = 999
    assert not session.is_complete()
    output.position = 1000
    assert session.is_complete()
    assert session.state is PlaybackState.COMPLETED
    assert session.position_ms() == 1000
    with pytest.raises(InvalidTransition):
        session.pause()


def test_set_volume_clamps_and_applies_immediately() -> None:
    session, output = _playing_session()
    session.set_volume(1.7)
    assert session.volume == 1.0
    session.set_volume(-0.2)
    assert session.volume == 0.0
    assert output.commands[-1] == SetVolume(0.0)


def test_volume_set_while_idle_is_applied_on_start() -> None:
    output = FakeOutput("page.mp3")
    session = PlaybackSession(make_page(0), output)
    session.set_volume(0.25)
    assert output.commands == []
    asyncio.run(session.start())
    assert output.commands[0] == SetVolume(0.25)


def test_release_is_idempotent_and_closes_once() -> None:
    session, output = _playing_session()
    session.release()
    session.release()
    assert output.close_calls == 1


def test_operations_after_release_raise_session_closed() -> None:
    session, _ = _playing_session()
    session.release()

    for operation in (
        session.pause,
        session.resume,
        session.position_ms,
        session.duration_ms,
        session.is_complete,
        lambda: session.set_volume(0.5),
    ):
        with pytest.raises(SessionClosed):
            operation()
    with pytest.raises(SessionClosed):
        asyncio.run(session.start())


def test_release_failure_is_logged_not_raised() -> None:
    session, output = _playing_session()
    output.close_error = RuntimeError("device busy")
    session.release()
    assert session.released
    assert output.close_calls == 1


def test_sessions_get_distinct_ids() -> None:
    first = PlaybackSession(make_page(0), FakeOutput("a.mp3"))
    second = PlaybackSession(make_page(0), FakeOutput("a.mp3"))
    assert first.session_id != second.session_id
