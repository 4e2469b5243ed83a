"""Segment transcription via Faster Whisper."""

import asyncio
import io
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import soundfile
from scipy.signal import resample_poly

from live_translate._types import TranscriptionResult, TranscriptionSegment

logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000


def normalize_text(text: str) -> str:
    """Collapse whitespace and tidy punctuation in transcribed text."""
    text = text.strip()
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\.{2,}", ".", text)
    text = re.sub(r"\s+([.,!?;:])", r"\1", text)
    return text


class Transcriber:
    """Encapsulates Faster Whisper model and transcription logic.

    Runs transcription inside a thread pool executor to avoid blocking the event loop.
    Lazy-loads model on first transcription to avoid startup overhead.
    """

    def __init__(
        self,
        model_name: str = "base",
        device: str = "cpu",
        compute_type: str = "int8",
        model_directory: str | None = None,
        beam_size: int = 5,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Initialize transcriber.

        Args:
            model_name: Faster Whisper model name (tiny, base, small, etc.)
            device: Device to run on (cpu, cuda, auto)
            compute_type: Compute precision (int8, float16, float32)
            model_directory: Custom cache directory for model weights
            beam_size: Beam search width for decoding
            executor: Optional ThreadPoolExecutor for transcription tasks
        """
        self.model_name = model_name
        self.device = device
        self.compute_type = compute_type
        self.model_directory = model_directory
        self.beam_size = beam_size
        self.executor = executor or ThreadPoolExecutor(max_workers=1)
        self._executor_owned = executor is None
        self._model = None
        self._model_lock = asyncio.Lock()
        logger.info(
            "Transcriber initialized: model=%s, device=%s, compute_type=%s, beam_size=%d",
            model_name,
            device,
            compute_type,
            beam_size,
        )

    async def _ensure_model_loaded(self) -> None:
        """Lazy-load WhisperModel on first use.

        Raises:
            RuntimeError: If model fails to load
        """
        async with self._model_lock:
            if self._model is not None:
                return

            logger.info(
                "Loading Faster Whisper model: %s (device=%s, compute_type=%s)",
                self.model_name,
                self.device,
                self.compute_type,
            )

            try:
                from faster_whisper import WhisperModel

                start_time = time.perf_counter()
                self._model = WhisperModel(
                    self.model_name,
                    device=self.device,
                    compute_type=self.compute_type,
                    download_root=self.model_directory,
                )
                duration = time.perf_counter() - start_time
                logger.info("Model loaded successfully in %.2f seconds", duration)
            except Exception as e:
                logger.error(
                    "Failed to load model %s on device %s: %s",
                    self.model_name,
                    self.device,
                    e,
                )
                raise RuntimeError(
                    f"Failed to load Whisper model '{self.model_name}' on device "
                    f"'{self.device}' with compute_type '{self.compute_type}': {e}"
                ) from e

    async def transcribe(
        self,
        audio: bytes,
        language: str = "en",
        timeout: float = 30.0,
    ) -> TranscriptionResult:
        """Transcribe one encoded audio segment.

        Args:
            audio: Encoded audio bytes (any format libsndfile reads)
            language: Language code (e.g., "en", "fr") or "auto" for detection
            timeout: Maximum time in seconds

        Returns:
            TranscriptionResult with text, language, and segments

        Raises:
            RuntimeError: If model loading or transcription fails or times out
        """
        if not audio:
            raise RuntimeError("Audio segment is empty")

        await self._ensure_model_loaded()

        logger.debug("Starting transcription of %d bytes (language=%s)", len(audio), language)

        try:
            result = await asyncio.wait_for(
                asyncio.get_running_loop().run_in_executor(
                    self.executor,
                    self._transcribe_sync,
                    audio,
                    language,
                ),
                timeout=timeout,
            )
            logger.info("Transcription completed: %d segments", len(result.segments))
            return result
        except asyncio.TimeoutError as e:
            logger.error("Transcription timed out after %.1f seconds", timeout)
            raise RuntimeError(f"Transcription timed out after {timeout} seconds") from e
        except RuntimeError:
            raise
        except Exception as e:
            logger.error("Transcription failed: %s", e, exc_info=True)
            raise RuntimeError(f"Transcription failed: {e}") from e

    def _transcribe_sync(self, audio: bytes, language: str) -> TranscriptionResult:
        """Synchronous transcription (runs in thread pool)."""
        try:
            if self._model is None:
                raise RuntimeError("Model not loaded")

            audio_data = self._load_audio(audio)

            segments_iter, info = self._model.transcribe(
                audio_data,
                language=language if language != "auto" else None,
                beam_size=self.beam_size,
            )

            segments = [
                TranscriptionSegment(
                    text=seg.text.strip(),
                    start=seg.start,
                    end=seg.end,
                    confidence=float(np.exp(seg.avg_logprob)),
                )
                for seg in segments_iter
            ]

            text = normalize_text(" ".join(seg.text for seg in segments))
            detected_language = getattr(info, "language", None) or language
            confidence = (
                sum(seg.confidence for seg in segments) / len(segments) if segments else 0.0
            )

            return TranscriptionResult(
                text=text,
                language=detected_language,
                confidence=confidence,
                segments=segments,
            )

        except Exception as e:
            logger.error("Sync transcription failed: %s", e, exc_info=True)
            raise RuntimeError(f"Transcription processing failed: {e}") from e

    def _load_audio(self, audio: bytes) -> np.ndarray:
        """Decode segment bytes to 16 kHz mono float32 as Whisper expects.

        Raises:
            RuntimeError: If audio cannot be decoded
        """
        try:
            audio_data, sample_rate = soundfile.read(io.BytesIO(audio), dtype="float32")
        except Exception as e:
            logger.error("Failed to decode audio segment: %s", e)
            raise RuntimeError(f"Failed to decode audio segment: {e}") from e

        logger.debug("Decoded audio: sample_rate=%d, shape=%s", sample_rate, audio_data.shape)

        if audio_data.ndim > 1:
            audio_data = np.mean(audio_data, axis=1)

        if sample_rate != WHISPER_SAMPLE_RATE:
            logger.debug("Resampling from %d Hz to 16 kHz", sample_rate)
            audio_data = resample_poly(audio_data, WHISPER_SAMPLE_RATE, sample_rate)

        return np.clip(audio_data, -1.0, 1.0).astype(np.float32)

    async def shutdown(self) -> None:
        """Release model reference and stop thread pool if owned by this instance."""
        logger.info("Transcriber shutting down")
        self._model = None
        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=True)
            logger.debug("Executor shut down")
