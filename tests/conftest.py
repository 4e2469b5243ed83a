"""Shared fakes for the pipeline tests."""

import asyncio

import numpy as np
import pytest

from live_translate._types import AudioSegment, TranscriptionResult
from live_translate.recorder import DeviceUnavailable


class FakeTimer:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock: timers fire only when ``advance`` moves past them."""

    def __init__(self, start=0.0):
        self.time = start
        self.timers: list[FakeTimer] = []

    def now(self):
        return self.time

    def call_later(self, delay, callback):
        timer = FakeTimer(self.time + delay, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds):
        target = self.time + seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.time = timer.when
            timer.callback()
        self.time = target

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled]


class FakeCaptureDevice:
    """Capture device producing one frame per 1/sample_rate of scheduler time."""

    def __init__(self, scheduler, sample_rate=8000, deny_permission=False, fail_on_start=None):
        self.scheduler = scheduler
        self.sample_rate = sample_rate
        self.deny_permission = deny_permission
        self.fail_on_start = fail_on_start
        self.start_calls = 0
        self.stop_calls = 0
        self.close_calls = 0
        self.captured_seconds = 0.0
        self._since = None

    def request_permission(self):
        if self.deny_permission:
            raise DeviceUnavailable("Permission denied")

    def start(self):
        self.start_calls += 1
        if self.fail_on_start is not None and self.start_calls >= self.fail_on_start:
            raise OSError("Device disconnected")
        self._since = self.scheduler.now()

    def stop(self):
        self.stop_calls += 1
        if self._since is None:
            return np.zeros((0, 1), dtype=np.float32)
        elapsed = self.scheduler.now() - self._since
        self._since = None
        self.captured_seconds += elapsed
        frames = int(round(elapsed * self.sample_rate))
        return np.full((frames, 1), 0.1, dtype=np.float32)

    def close(self):
        self.close_calls += 1
        self._since = None


class FakeTranscriptionService:
    """Returns scripted running transcripts keyed by segment index.

    ``delays`` holds per-index sleeps so responses can complete out of order;
    ``failures`` holds indices whose call raises.
    """

    def __init__(self, transcripts, delays=None, failures=(), language="en"):
        self.transcripts = transcripts
        self.delays = delays or {}
        self.failures = set(failures)
        self.language = language
        self.calls: list[int] = []
        self.completed: list[int] = []
        self.reset_calls = 0

    async def transcribe(self, segment: AudioSegment) -> TranscriptionResult:
        self.calls.append(segment.index)
        delay = self.delays.get(segment.index, 0)
        if delay:
            await asyncio.sleep(delay)
        self.completed.append(segment.index)
        if segment.index in self.failures:
            raise RuntimeError(f"Service error for segment {segment.index}")
        return TranscriptionResult(text=self.transcripts[segment.index], language=self.language)

    def reset(self):
        self.reset_calls += 1


class FakeLanguageModel:
    """Records prompts and answers from a mapping of source text to translation."""

    def __init__(self, translations=None, delay=0, fail_on=()):
        self.translations = translations or {}
        self.delay = delay
        self.fail_on = set(fail_on)
        self.prompts: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(self, prompt):
        self.prompts.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            text = prompt.split('Text to translate: "', 1)[-1].split('"', 1)[0]
            if text in self.fail_on:
                raise RuntimeError("Language model unavailable")
            return self.translations.get(text, f"<{text}>")
        finally:
            self.in_flight -= 1


class FakeSpeechDevice:
    """Speech device whose utterances last ``duration`` seconds of loop time."""

    def __init__(self, duration=0.05, voices=None, fail_on=()):
        self.duration = duration
        self.voices = voices or []
        self.fail_on = set(fail_on)
        self.spoken: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0
        self.cancel_calls = 0
        self.list_calls = 0

    async def list_voices(self):
        self.list_calls += 1
        return list(self.voices)

    async def speak(self, text, voice, rate=1.2, pitch=1.0, volume=0.8):
        from live_translate.speech import SpeechPlaybackError

        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            self.spoken.append((text, voice.locale))
            if text in self.fail_on:
                raise SpeechPlaybackError("Synthesis failed")
            await asyncio.sleep(self.duration)
        finally:
            self.active -= 1

    def cancel(self):
        self.cancel_calls += 1


def make_segment(index, data=b"audio", timestamp=None):
    return AudioSegment(
        data=data,
        index=index,
        encoding="audio/wav",
        timestamp=float(index * 10) if timestamp is None else timestamp,
        duration=10.0,
    )


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def capture_device(scheduler):
    return FakeCaptureDevice(scheduler)
