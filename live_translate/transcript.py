"""Merges per-segment transcription results into one growing transcript."""

import asyncio
import logging
from typing import Protocol

from live_translate._types import AudioSegment, TranscriptionResult, TranscriptUpdate

logger = logging.getLogger(__name__)


class TranscriptionFailed(RuntimeError):
    """A segment's transcription could not be applied to the transcript."""

    pass


class TranscriptionService(Protocol):
    """Returns the full transcript so far for each submitted segment."""

    async def transcribe(self, segment: AudioSegment) -> TranscriptionResult: ...

    def reset(self) -> None: ...


class TranscriptAccumulator:
    """Owns the session transcript and the suffix added by each update.

    Segments may be submitted concurrently. Service calls overlap, but results
    are applied strictly in submission order: each submission waits for its
    predecessor to be applied before touching the transcript.
    """

    def __init__(self, service: TranscriptionService):
        self.service = service
        self.full_text = ""
        self.detected_language: str | None = None
        self._previous_length = 0
        self._last_index = -1
        self._tail: asyncio.Future | None = None
        self._generation = 0

    async def submit(self, segment: AudioSegment) -> TranscriptUpdate:
        """Transcribe ``segment`` and merge the returned running transcript.

        Returns:
            The transcript and the newly added suffix after this segment

        Raises:
            ValueError: If segments are submitted out of capture order
            TranscriptionFailed: If the service fails or returns text shorter
                than the cached transcript; the transcript is left untouched
        """
        if segment.index <= self._last_index:
            raise ValueError(
                f"Segment {segment.index} submitted after segment {self._last_index}"
            )
        self._last_index = segment.index

        generation = self._generation
        previous = self._tail
        applied = asyncio.get_running_loop().create_future()
        self._tail = applied

        try:
            result: TranscriptionResult | None = None
            error: Exception | None = None
            try:
                result = await self.service.transcribe(segment)
            except Exception as e:
                error = e

            if previous is not None:
                await asyncio.shield(previous)

            return self._apply(segment, result, error, generation)
        finally:
            if not applied.done():
                applied.set_result(None)

    def _apply(
        self,
        segment: AudioSegment,
        result: TranscriptionResult | None,
        error: Exception | None,
        generation: int,
    ) -> TranscriptUpdate:
        if generation != self._generation:
            logger.debug("Discarding segment %d result from a cleared transcript", segment.index)
            return TranscriptUpdate(full_text=self.full_text, suffix="", segment_index=segment.index)

        if error is not None:
            logger.warning(
                "Transcription of segment %d failed (%s: %s), skipping its contribution",
                segment.index,
                type(error).__name__,
                error,
            )
            raise TranscriptionFailed(
                f"Transcription of segment {segment.index} failed: {error}"
            ) from error

        text = result.text
        if len(text) < len(self.full_text):
            logger.warning(
                "Segment %d returned a shorter transcript (%d < %d chars), ignoring",
                segment.index,
                len(text),
                len(self.full_text),
            )
            raise TranscriptionFailed(
                f"Transcript for segment {segment.index} shrank from "
                f"{len(self.full_text)} to {len(text)} characters"
            )

        self._previous_length = len(self.full_text)
        self.full_text = text
        if result.language:
            self.detected_language = result.language

        suffix = self.diff_since_last()
        logger.info(
            "Transcript updated by segment %d: %d chars (+%d)",
            segment.index,
            len(text),
            len(suffix),
        )
        return TranscriptUpdate(full_text=text, suffix=suffix, segment_index=segment.index)

    def diff_since_last(self) -> str:
        """Text added by the most recent successful submission.

        Computed by length, not alignment: empty when the latest transcript is
        no longer than the one before it.
        """
        if len(self.full_text) <= self._previous_length:
            return ""
        return self.full_text[self._previous_length:]

    def clear(self) -> None:
        """Reset to an empty transcript; in-flight results are discarded."""
        self._generation += 1
        self.full_text = ""
        self.detected_language = None
        self._previous_length = 0
        self._last_index = -1
        self._tail = None
        self.service.reset()
