"""Speech-to-text service answering with the running transcript."""

import asyncio
import logging
from typing import Protocol

from live_translate._types import AudioSegment, TranscriptionResult
from live_translate.config import Config
from live_translate.retry import NO_RETRY, RetryPolicy
from live_translate.transcriber import Transcriber
from live_translate.transcriber_deepgram import DeepgramTranscriber

logger = logging.getLogger(__name__)


class SegmentTranscriber(Protocol):
    """Backend that transcribes one segment in isolation."""

    async def transcribe(
        self, audio: bytes, language: str = "en", timeout: float = 30.0
    ) -> TranscriptionResult: ...

    async def shutdown(self) -> None: ...


class RunningTranscriptionService:
    """Adapts a per-segment backend to return the complete text so far.

    Calls are serialized so pieces join in the order segments were submitted.
    """

    def __init__(
        self,
        backend: SegmentTranscriber,
        language: str = "en",
        timeout: float = 30.0,
        retry: RetryPolicy | None = None,
    ):
        self.backend = backend
        self.language = language
        self.timeout = timeout
        self.retry = retry or NO_RETRY
        self._text = ""
        self._lock = asyncio.Lock()
        self._generation = 0

    @property
    def text(self) -> str:
        return self._text

    async def transcribe(self, segment: AudioSegment) -> TranscriptionResult:
        """Transcribe ``segment`` and return the running transcript.

        Raises:
            RuntimeError: If the backend fails after the retry policy gives up
        """
        async with self._lock:
            generation = self._generation
            result = await self.retry.run(
                lambda: self.backend.transcribe(segment.data, self.language, self.timeout),
                description=f"Transcription of segment {segment.index}",
            )

            piece = result.text.strip()
            if generation != self._generation:
                logger.debug("Segment %d finished after reset, not merged", segment.index)
            elif piece:
                self._text = f"{self._text} {piece}" if self._text else piece
            else:
                logger.debug("Segment %d produced no text", segment.index)

            return TranscriptionResult(
                text=self._text,
                language=result.language,
                confidence=result.confidence,
                segments=result.segments,
            )

    def reset(self) -> None:
        """Forget the running transcript; results still in flight are dropped."""
        self._generation += 1
        self._text = ""

    async def shutdown(self) -> None:
        await self.backend.shutdown()


def create_transcriber(cfg: Config) -> SegmentTranscriber:
    """Build the segment backend selected by ``transcription.backend``."""
    backend = cfg.transcription.backend
    if backend == "faster_whisper":
        return Transcriber(
            model_name=cfg.model.name,
            device=cfg.model.device,
            compute_type=cfg.model.compute_type,
            model_directory=cfg.model.model_directory,
            beam_size=cfg.model.beam_size,
        )
    if backend == "deepgram":
        if not cfg.deepgram.api_key:
            raise ValueError("Deepgram backend selected but no API key configured")
        return DeepgramTranscriber(
            api_key=cfg.deepgram.api_key,
            model=cfg.deepgram.model,
            smart_format=cfg.deepgram.smart_format,
            punctuate=cfg.deepgram.punctuate,
            utterances=cfg.deepgram.utterances,
        )
    raise ValueError(f"Unknown transcription backend: {backend}")
