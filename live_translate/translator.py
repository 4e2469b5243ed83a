"""Context-aware incremental translation of new transcript text."""

import asyncio
import logging
from collections import deque
from typing import Protocol, Sequence

from live_translate._types import TranslationSegment

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "ja": "Japanese",
    "es": "Spanish",
    "zh": "Chinese",
    "fr": "French",
    "it": "Italian",
    "ko": "Korean",
    "ar": "Arabic",
    "hi": "Hindi",
    "ru": "Russian",
    "id": "Indonesian",
    "en": "English",
}

DEFAULT_CONTEXT_SIZE = 3


class TranslationFailed(RuntimeError):
    """The language model could not translate a suffix."""

    pass


class LanguageModel(Protocol):
    async def complete(self, prompt: str) -> str: ...


def language_name(code: str) -> str:
    """Human-readable language name for prompts; unknown codes pass through."""
    return LANGUAGE_NAMES.get(code, code)


class ContextWindow:
    """Bounded FIFO of the most recent translations, oldest first."""

    def __init__(self, capacity: int = DEFAULT_CONTEXT_SIZE):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._items: deque[str] = deque(maxlen=capacity)

    def push(self, translation: str) -> None:
        self._items.append(translation)

    def items(self) -> list[str]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


def build_translation_prompt(
    text: str,
    target_language: str,
    context: Sequence[str] = (),
    source_language: str = "en",
) -> str:
    """Build the instruction sent to the language model for one suffix.

    Args:
        text: Newly transcribed text to translate
        target_language: Target language code
        context: Previous translations, oldest first
        source_language: Source language code

    Returns:
        Prompt text
    """
    source = language_name(source_language)
    target = language_name(target_language)
    header = (
        f"You are a professional real-time interpreter. "
        f"Translate the following {source} text into {target}."
    )

    if context:
        context_text = "\n".join(context)
        body = (
            "This text continues an ongoing live transcription. "
            "The most recent translations, oldest first, were:\n"
            f'"""\n{context_text}\n"""\n\n'
            "Continue naturally from that context so the new translation reads as "
            "its direct continuation. Keep terminology and style consistent. Do not "
            "repeat, re-explain or re-translate anything already covered above; "
            "translate only the new text, filling in missing words only where "
            "needed for coherence."
        )
    else:
        body = (
            "This is the beginning of a live transcription session. Give a natural, "
            "accurate translation, filling in missing words only where needed for "
            "coherence."
        )

    return (
        f"{header}\n\n{body}\n\n"
        f'Text to translate: "{text}"\n\n'
        "Reply with the translation only, without explanations or quotation marks."
    )


class TranslationContextManager:
    """Translates transcript suffixes one at a time with recent context.

    Calls are serialized by a lock: a suffix's prompt always includes the
    result of the suffix detected before it.
    """

    def __init__(
        self,
        llm: LanguageModel,
        target_language: str = "ja",
        source_language: str = "en",
        context_size: int = DEFAULT_CONTEXT_SIZE,
    ):
        self.llm = llm
        self.target_language = target_language
        self.source_language = source_language
        self.window = ContextWindow(context_size)
        self.segments: list[TranslationSegment] = []
        self._lock = asyncio.Lock()
        self._generation = 0

    @property
    def translation_text(self) -> str:
        """Running translation, segments joined by spaces."""
        return " ".join(seg.translated_text for seg in self.segments)

    async def translate_new(
        self,
        suffix: str,
        target_language: str | None = None,
    ) -> TranslationSegment | None:
        """Translate ``suffix`` and append it to the running translation.

        Returns:
            The new segment, or None when the suffix is blank or the
            translation was cleared while in flight

        Raises:
            TranslationFailed: If the language model fails; the suffix is dropped
        """
        text = suffix.strip()
        if not text:
            return None

        language = target_language or self.target_language

        async with self._lock:
            generation = self._generation
            prompt = build_translation_prompt(
                text,
                language,
                self.window.items(),
                self.source_language,
            )
            logger.debug(
                "Translating %d chars to %s with %d context segments",
                len(text),
                language,
                len(self.window),
            )

            try:
                translated = (await self.llm.complete(prompt)).strip()
            except Exception as e:
                logger.warning(
                    "Translation failed (%s: %s), dropping suffix: %r",
                    type(e).__name__,
                    e,
                    text[:50],
                )
                raise TranslationFailed(f"Translation failed: {e}") from e

            if not translated:
                logger.warning("Translation came back empty, dropping suffix: %r", text[:50])
                raise TranslationFailed("Translation came back empty")

            if generation != self._generation:
                logger.debug("Discarding translation finished after clear")
                return None

            segment = TranslationSegment(
                source_text=text,
                translated_text=translated,
                target_language=language,
                position=len(self.segments),
            )
            self.segments.append(segment)
            self.window.push(translated)
            logger.info("Translation segment %d appended (%s)", segment.position, language)
            return segment

    def clear(self) -> None:
        """Drop all segments and context."""
        self._generation += 1
        self.segments = []
        self.window.clear()
