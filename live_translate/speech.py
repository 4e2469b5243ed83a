"""Serialized spoken playback of translated segments."""

import asyncio
import logging
import re
import shutil
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from live_translate._types import SpeechTask

logger = logging.getLogger(__name__)

LOCALE_MAP = {
    "ja": "ja-JP",
    "es": "es-ES",
    "zh": "zh-CN",
    "fr": "fr-FR",
    "it": "it-IT",
    "ko": "ko-KR",
    "ar": "ar-SA",
    "hi": "hi-IN",
    "ru": "ru-RU",
    "id": "id-ID",
}
DEFAULT_LOCALE = "en-US"

BASE_WORDS_PER_MINUTE = 175

_SAY_VOICE_RE = re.compile(r"^(?P<name>.+?)\s+(?P<locale>[a-z]{2,3}[_-][A-Za-z0-9]+)\s+#")


class SpeechPlaybackError(Exception):
    """An utterance could not be spoken."""

    pass


class CommandNotFoundError(SpeechPlaybackError):
    """Required speech binary unavailable or not executable."""

    pass


@dataclass(frozen=True)
class Voice:
    """A voice offered by the speech backend."""

    name: str | None
    locale: str


def resolve_voice(language_code: str, voices: Sequence[Voice]) -> Voice:
    """Pick a voice for ``language_code``.

    Prefers a voice whose locale starts with the code, then one whose locale
    contains it, then falls back to the default locale mapping.
    """
    code = language_code.lower()
    for voice in voices:
        if voice.locale.lower().startswith(code):
            return voice
    for voice in voices:
        if code in voice.locale.lower():
            return voice
    return Voice(name=None, locale=LOCALE_MAP.get(code, DEFAULT_LOCALE))


def _language_part(locale: str) -> str:
    return locale.split("-")[0].split("_")[0].lower()


class SpeechDevice(Protocol):
    """Speech-output device contract used by the queue."""

    async def list_voices(self) -> list[Voice]: ...

    async def speak(
        self, text: str, voice: Voice, rate: float, pitch: float, volume: float
    ) -> None: ...

    def cancel(self) -> None: ...


class SpeechOutput:
    """Speaks text through a command-line TTS backend.

    Supports espeak-ng (default), macOS say, or speech-dispatcher's spd-say.
    Each utterance is one subprocess; ``cancel()`` terminates it.
    """

    def __init__(self, backend: str = "espeak-ng", timeout: float = 60.0, dry_run: bool = False):
        """Initialize speech output.

        Args:
            backend: TTS binary to drive (espeak-ng, say, spd-say)
            timeout: Maximum seconds for a single utterance
            dry_run: Log commands instead of running them
        """
        if backend not in ("espeak-ng", "say", "spd-say"):
            raise ValueError(f"Unknown speech backend: {backend}")

        self.backend = backend
        self.timeout = timeout
        self.dry_run = dry_run
        self._binary_cache: dict[str, Path] = {}
        self._process: asyncio.subprocess.Process | None = None
        self._cancelled = False

        logger.info(
            "SpeechOutput initialized: backend=%s, timeout=%.1fs, dry_run=%s",
            backend,
            timeout,
            dry_run,
        )

    def _validate_binary(self, binary_name: str) -> Path:
        """Resolve binary on PATH.

        Raises:
            CommandNotFoundError: If binary not found
        """
        if binary_name in self._binary_cache:
            return self._binary_cache[binary_name]

        binary_path = shutil.which(binary_name)
        if not binary_path:
            raise CommandNotFoundError(
                f"Binary '{binary_name}' not found in PATH. "
                f"Install it to enable speech output."
            )

        resolved = Path(binary_path)
        self._binary_cache[binary_name] = resolved
        logger.debug("Validated binary: %s -> %s", binary_name, resolved)
        return resolved

    def _resolve_command(
        self, text: str, voice: Voice, rate: float, pitch: float, volume: float
    ) -> list[str]:
        """Build the backend command line for one utterance."""
        binary = str(self._validate_binary(self.backend))
        wpm = str(int(BASE_WORDS_PER_MINUTE * rate))

        if self.backend == "espeak-ng":
            # Fallback voices hold a BCP 47 locale, not an espeak identifier.
            language = voice.locale.lower() if voice.name else _language_part(voice.locale)
            return [
                binary,
                "-v", language,
                "-s", wpm,
                "-p", str(max(0, min(99, int(50 * pitch)))),
                "-a", str(max(0, min(200, int(100 * volume)))),
                text,
            ]
        if self.backend == "say":
            cmd = [binary, "-r", wpm]
            if voice.name:
                cmd.extend(["-v", voice.name])
            cmd.append(text)
            return cmd
        if self.backend == "spd-say":
            cmd = [
                binary,
                "-w",
                "-l", _language_part(voice.locale),
                "-r", str(max(-100, min(100, int((rate - 1.0) * 100)))),
                "-p", str(max(-100, min(100, int((pitch - 1.0) * 100)))),
                "-i", str(max(-100, min(100, int(volume * 200 - 100)))),
            ]
            if voice.name:
                cmd.extend(["-y", voice.name])
            cmd.append(text)
            return cmd
        raise ValueError(f"Unknown speech backend: {self.backend}")

    def _voices_command(self) -> list[str]:
        binary = str(self._validate_binary(self.backend))
        if self.backend == "espeak-ng":
            return [binary, "--voices"]
        if self.backend == "say":
            return [binary, "-v", "?"]
        return [binary, "-L"]

    async def list_voices(self) -> list[Voice]:
        """Query the backend's voices; empty list when they cannot be listed."""
        if self.dry_run:
            return []

        try:
            cmd = self._voices_command()
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except (CommandNotFoundError, OSError, asyncio.TimeoutError) as e:
            logger.warning("Could not list %s voices: %s", self.backend, e)
            return []

        voices = self._parse_voices(stdout.decode("utf-8", errors="replace"))
        logger.debug("Found %d %s voices", len(voices), self.backend)
        return voices

    def _parse_voices(self, output: str) -> list[Voice]:
        voices = []
        lines = output.splitlines()
        if self.backend == "espeak-ng":
            # Pty Language Age/Gender VoiceName File Other Languages
            for line in lines[1:]:
                parts = line.split()
                if len(parts) >= 4:
                    voices.append(Voice(name=parts[3], locale=parts[1]))
        elif self.backend == "say":
            for line in lines:
                match = _SAY_VOICE_RE.match(line)
                if match:
                    voices.append(
                        Voice(name=match["name"].strip(), locale=match["locale"].replace("_", "-"))
                    )
        else:
            # NAME LANGUAGE VARIANT
            for line in lines[1:]:
                parts = line.split()
                if len(parts) >= 2:
                    voices.append(Voice(name=parts[0], locale=parts[1]))
        return voices

    async def speak(
        self,
        text: str,
        voice: Voice,
        rate: float = 1.2,
        pitch: float = 1.0,
        volume: float = 0.8,
    ) -> None:
        """Speak ``text`` to completion or until ``cancel()``.

        Raises:
            CommandNotFoundError: If the backend binary is missing
            SpeechPlaybackError: If the backend fails or exceeds the timeout
        """
        cmd = self._resolve_command(text, voice, rate, pitch, volume)

        if self.dry_run:
            logger.info("[DRY-RUN] Would execute: %s", " ".join(cmd))
            return

        logger.debug("Executing %s: %s", self.backend, " ".join(cmd[:-1]))
        self._cancelled = False
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SpeechPlaybackError(f"Failed to launch {self.backend}: {e}") from e

        process = self._process
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self._terminate(process)
            raise SpeechPlaybackError(
                f"{self.backend} utterance timed out after {self.timeout}s"
            ) from e
        except asyncio.CancelledError:
            self._terminate(process)
            raise
        finally:
            self._process = None

        if self._cancelled:
            logger.debug("Utterance interrupted")
            return

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
            raise SpeechPlaybackError(
                f"{self.backend} failed with exit code {process.returncode}: {message}"
            )

        logger.debug("Utterance finished")

    def cancel(self) -> None:
        """Interrupt the utterance in progress, if any."""
        if self._process is not None:
            self._cancelled = True
            self._terminate(self._process)

    @staticmethod
    def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass


class SpeechQueue:
    """Plays queued utterances strictly one at a time in arrival order.

    Owns the speech device for the session. A failed utterance is logged and
    the queue moves on to the next task.
    """

    def __init__(
        self,
        output: SpeechDevice,
        rate: float = 1.2,
        pitch: float = 1.0,
        volume: float = 0.8,
        inter_task_pause: float = 0.1,
    ):
        self.output = output
        self.rate = rate
        self.pitch = pitch
        self.volume = volume
        self.inter_task_pause = inter_task_pause
        self._queue: deque[SpeechTask] = deque()
        self._worker: asyncio.Task | None = None
        self._voices: list[Voice] | None = None
        self.current: SpeechTask | None = None

    @property
    def is_speaking(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return len(self._queue)

    def enqueue(self, text: str, language_code: str) -> None:
        """Queue ``text`` and start processing if nothing is speaking."""
        if not text.strip():
            return

        self._queue.append(SpeechTask(text=text, language_code=language_code))
        logger.debug("Queued utterance (%s), %d pending", language_code, len(self._queue))

        if not self.is_speaking:
            self._worker = asyncio.create_task(self._process_queue())

    async def _process_queue(self) -> None:
        while self._queue:
            task = self._queue.popleft()
            self.current = task
            try:
                voice = await self._resolve_voice(task.language_code)
                await self.output.speak(
                    task.text,
                    voice,
                    rate=self.rate,
                    pitch=self.pitch,
                    volume=self.volume,
                )
            except SpeechPlaybackError as e:
                logger.warning("Speech playback failed (%s), skipping utterance", e)
            except Exception as e:
                logger.error("Unexpected speech error: %s", e, exc_info=True)
            finally:
                self.current = None

            if self._queue and self.inter_task_pause > 0:
                await asyncio.sleep(self.inter_task_pause)

    async def _resolve_voice(self, language_code: str) -> Voice:
        if self._voices is None:
            self._voices = await self.output.list_voices()
        return resolve_voice(language_code, self._voices)

    async def stop_all(self) -> None:
        """Interrupt the current utterance, drop queued tasks, return to idle."""
        dropped = len(self._queue)
        self._queue.clear()
        self.output.cancel()

        worker = self._worker
        self._worker = None
        if worker and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

        self.current = None
        if dropped:
            logger.info("Speech queue cleared, %d utterances dropped", dropped)

    async def wait_idle(self) -> None:
        """Wait until every queued utterance has been played."""
        while self._worker is not None and not self._worker.done():
            await asyncio.wait({self._worker})
