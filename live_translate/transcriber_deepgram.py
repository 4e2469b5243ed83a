"""Segment transcription via Deepgram API."""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor

from live_translate._types import TranscriptionResult, TranscriptionSegment
from live_translate.transcriber import normalize_text

logger = logging.getLogger(__name__)


class DeepgramTranscriber:
    """Encapsulates Deepgram API client and transcription logic.

    Runs transcription inside a thread pool executor to avoid blocking the event loop.
    Lazy-initializes client on first transcription.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "nova-3",
        smart_format: bool = True,
        punctuate: bool = True,
        utterances: bool = True,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Initialize Deepgram transcriber.

        Args:
            api_key: Deepgram API key
            model: Deepgram model (nova-3, nova-2, whisper-large, etc.)
            smart_format: Enable smart formatting (currency, dates, etc.)
            punctuate: Auto-add punctuation
            utterances: Return utterance-level timestamps
            executor: Optional ThreadPoolExecutor for transcription tasks
        """
        self.api_key = api_key
        self.model = model
        self.smart_format = smart_format
        self.punctuate = punctuate
        self.utterances = utterances
        self.executor = executor or ThreadPoolExecutor(max_workers=1)
        self._executor_owned = executor is None
        self._client = None
        self._client_lock = asyncio.Lock()
        logger.info(
            "DeepgramTranscriber initialized: model=%s, smart_format=%s, punctuate=%s",
            model,
            smart_format,
            punctuate,
        )

    async def _ensure_client_initialized(self) -> None:
        """Lazy-initialize Deepgram client on first use.

        Raises:
            RuntimeError: If client initialization fails
        """
        async with self._client_lock:
            if self._client is not None:
                return

            logger.info("Initializing Deepgram client with model: %s", self.model)

            try:
                from deepgram import DeepgramClient

                start_time = time.perf_counter()
                self._client = DeepgramClient(api_key=self.api_key)
                duration = time.perf_counter() - start_time
                logger.info("Deepgram client initialized in %.3f seconds", duration)
            except Exception as e:
                logger.error("Failed to initialize Deepgram client: %s", e)
                raise RuntimeError(f"Failed to initialize Deepgram client: {e}") from e

    async def transcribe(
        self,
        audio: bytes,
        language: str = "en",
        timeout: float = 30.0,
    ) -> TranscriptionResult:
        """Transcribe one encoded audio segment using the Deepgram API.

        Args:
            audio: Encoded audio bytes (WAV, FLAC, OGG/Opus, etc.)
            language: Language code (e.g., "en", "fr") or "auto" for detection
            timeout: Maximum time in seconds

        Returns:
            TranscriptionResult with text, language, and segments

        Raises:
            RuntimeError: If client initialization or transcription fails or times out
        """
        if not audio:
            raise RuntimeError("Audio segment is empty")

        await self._ensure_client_initialized()

        logger.debug("Sending %d bytes to Deepgram (language=%s)", len(audio), language)

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
        """Synchronous transcription using Deepgram API (runs in thread pool)."""
        if self._client is None:
            raise RuntimeError("Deepgram client not initialized")

        options = {
            "model": self.model,
            "smart_format": self.smart_format,
            "punctuate": self.punctuate,
            "utterances": self.utterances,
        }
        if language == "auto":
            options["detect_language"] = True
        else:
            options["language"] = language

        logger.debug("Deepgram options: %s", options)

        from deepgram.core.api_error import ApiError

        try:
            response = self._client.listen.v1.media.transcribe_file(
                request=audio,
                **options,
            )
        except ApiError as e:
            if e.status_code == 401:
                raise RuntimeError("Invalid Deepgram API key") from e
            elif e.status_code == 429:
                raise RuntimeError("Deepgram API rate limit exceeded") from e
            elif e.status_code is not None and e.status_code >= 500:
                raise RuntimeError(f"Deepgram server error: {e.status_code}") from e
            else:
                raise RuntimeError(f"Deepgram API error ({e.status_code}): {e.body}") from e

        try:
            channel = response.results.channels[0]
            alternative = channel.alternatives[0]
        except (AttributeError, IndexError) as e:
            raise RuntimeError(f"Unexpected Deepgram response shape: {e}") from e

        detected_language = language
        if language == "auto":
            detected_language = getattr(channel, "detected_language", None) or "en"

        segments = []
        for utt in getattr(response.results, "utterances", None) or []:
            segments.append(
                TranscriptionSegment(
                    text=utt.transcript,
                    start=utt.start,
                    end=utt.end,
                    confidence=getattr(utt, "confidence", 0.0) or 0.0,
                )
            )

        return TranscriptionResult(
            text=normalize_text(alternative.transcript or ""),
            language=detected_language,
            confidence=getattr(alternative, "confidence", 0.0) or 0.0,
            segments=segments,
        )

    async def shutdown(self) -> None:
        """Release client reference and stop thread pool if owned by this instance."""
        logger.info("DeepgramTranscriber shutting down")
        self._client = None
        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=True)
            logger.debug("Executor shut down")
