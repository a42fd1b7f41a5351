"""
Unit tests for ReplayEngine rendering and load outcomes.
"""

import json

import pytest

from termrelay.errors import RecordingAbsent, RecordingLoadError
from termrelay.replay.engine import ReplayEngine, ReplayStatus
from termrelay.replay.source import FileRecordingSource, RecordingSource
from termrelay.sanitize import sanitize

HEADER = '{"version":2,"width":80,"height":24}'


def _log(*events) -> str:
    return "\n".join([HEADER] + [json.dumps(list(e)) for e in events]) + "\n"


def _engine(*events) -> ReplayEngine:
    engine = ReplayEngine()
    engine.load(_log(*events))
    return engine


class StaticSource(RecordingSource):
    """Returns a fixed log or raises a fixed error."""

    def __init__(self, text: str = "", error: Exception = None):
        self.text = text
        self.error = error

    async def fetch(self, session_id: str) -> str:
        if self.error is not None:
            raise self.error
        return self.text


class TestRenderAt:
    def test_cumulative_output(self):
        engine = _engine((0, "o", "hello "), (1.5, "o", "world"))
        assert engine.render_at(1.0) == "hello "
        assert engine.render_at(2.0) == "hello world"
        assert engine.duration == 1.5
        assert engine.has_recording
        assert engine.status is ReplayStatus.READY

    def test_legacy_prefixed_output(self):
        engine = _engine((0.2, "o", "0ls\n"))
        assert engine.render_at(1) == "ls\n"

    def test_title_sequence_removed(self):
        engine = _engine((0.1, "o", "\x1b]0;mytitle\x07visible"))
        assert engine.render_at(1) == "visible"

    def test_no_events(self):
        engine = ReplayEngine()
        engine.load(HEADER + "\n")
        assert engine.has_recording is False
        assert engine.status is ReplayStatus.NO_RECORDING
        assert engine.duration == 0
        assert engine.render_at(0) == ""
        assert engine.render_at(100) == ""

    def test_event_at_exact_time_included(self):
        engine = _engine((1.0, "o", "x"))
        assert engine.render_at(0.999) == ""
        assert engine.render_at(1.0) == "x"

    def test_input_and_resize_not_rendered(self):
        engine = _engine((0, "o", "$ "), (0.5, "i", "ls\r"), (0.6, "r", "100x30"), (1, "o", "a b"))
        assert engine.render_at(5) == "$ a b"

    def test_before_first_event_is_empty(self):
        engine = _engine((0.5, "o", "x"))
        assert engine.render_at(0) == ""

    def test_window_title_directive_dropped(self):
        engine = _engine((0, "o", "1my title"), (0.1, "o", "0$ "))
        assert engine.render_at(1) == "$ "

    def test_empty_engine(self):
        engine = ReplayEngine()
        assert engine.status is ReplayStatus.EMPTY
        assert engine.render_at(10) == ""
        assert engine.header is None


class TestRenderProperties:
    EVENTS = [
        (0, "o", "0\x1b]0;user@host\x07$ "),
        (0.4, "i", "ls\r"),
        (0.5, "o", "a.txt  b.txt\r\n"),
        (0.5, "o", "\x1b[32mdone\x1b[0m"),
        (1.2, "o", "1title"),
        (2.0, "o", "$ exit\r\n"),
    ]

    def test_prefix_consistent_in_time(self):
        engine = _engine(*self.EVENTS)
        times = [0, 0.1, 0.4, 0.5, 0.9, 1.2, 1.5, 2.0, 3.0]
        for earlier, later in zip(times, times[1:]):
            assert engine.render_at(later).startswith(engine.render_at(earlier))

    def test_render_at_duration_is_everything(self):
        engine = _engine(*self.EVENTS)
        expected = "".join(sanitize(data) for _, kind, data in self.EVENTS if kind == "o")
        assert engine.render_at(engine.duration) == expected

    def test_recomputed_on_every_call(self):
        engine = _engine(*self.EVENTS)
        late = engine.render_at(2.0)
        early = engine.render_at(0.5)
        assert engine.render_at(2.0) == late
        assert late.startswith(early)
        assert early != late


class TestLoadOutcomes:
    def test_invalid_header_fails(self):
        engine = ReplayEngine()
        with pytest.raises(RecordingLoadError):
            engine.load("not a header\n[0,\"o\",\"x\"]")
        assert engine.status is ReplayStatus.FAILED
        assert engine.render_at(10) == ""

    @pytest.mark.asyncio
    async def test_load_from_ready(self):
        engine = ReplayEngine()
        status = await engine.load_from(StaticSource(_log((0, "o", "hi"))), "s1")
        assert status is ReplayStatus.READY
        assert engine.render_at(1) == "hi"

    @pytest.mark.asyncio
    async def test_load_from_absent(self):
        engine = ReplayEngine()
        status = await engine.load_from(StaticSource(error=RecordingAbsent("none")), "s1")
        assert status is ReplayStatus.NO_RECORDING
        assert engine.error is None

    @pytest.mark.asyncio
    async def test_load_from_fetch_failure(self):
        engine = ReplayEngine()
        status = await engine.load_from(StaticSource(error=RecordingLoadError("HTTP 500")), "s1")
        assert status is ReplayStatus.FAILED
        assert isinstance(engine.error, RecordingLoadError)
        assert engine.render_at(5) == ""

    @pytest.mark.asyncio
    async def test_load_from_zero_events_is_not_failure(self):
        engine = ReplayEngine()
        status = await engine.load_from(StaticSource(HEADER + "\n"), "s1")
        assert status is ReplayStatus.NO_RECORDING

    @pytest.mark.asyncio
    async def test_load_from_bad_header(self):
        engine = ReplayEngine()
        status = await engine.load_from(StaticSource("oops"), "s1")
        assert status is ReplayStatus.FAILED

    @pytest.mark.asyncio
    async def test_failed_load_clears_previous_recording(self):
        engine = _engine((0, "o", "old"))
        await engine.load_from(StaticSource(error=RecordingLoadError("gone")), "s1")
        assert engine.recording is None
        assert engine.render_at(1) == ""


class TestFileRecordingSource:
    @pytest.mark.asyncio
    async def test_reads_cast_file(self, tmp_path):
        (tmp_path / "abc.cast").write_text(_log((0, "o", "x")), encoding="utf-8")
        text = await FileRecordingSource(tmp_path).fetch("abc")
        assert text.startswith(HEADER)

    @pytest.mark.asyncio
    async def test_missing_file_is_absent(self, tmp_path):
        with pytest.raises(RecordingAbsent):
            await FileRecordingSource(tmp_path).fetch("missing")

    @pytest.mark.asyncio
    async def test_empty_file_is_absent(self, tmp_path):
        (tmp_path / "s1.cast").write_text("", encoding="utf-8")
        with pytest.raises(RecordingAbsent):
            await FileRecordingSource(tmp_path).fetch("s1")

    @pytest.mark.asyncio
    async def test_empty_file_loads_as_no_recording(self, tmp_path):
        (tmp_path / "s1.cast").write_text("", encoding="utf-8")
        engine = ReplayEngine()
        status = await engine.load_from(FileRecordingSource(tmp_path), "s1")
        assert status is ReplayStatus.NO_RECORDING
        assert engine.error is None
