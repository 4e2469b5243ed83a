"""Post-session transcript summaries through the language model."""

import logging

from live_translate.translator import LanguageModel

logger = logging.getLogger(__name__)

SUMMARY_TYPES = ("short", "medium", "detailed")
MIN_TRANSCRIPT_LENGTH = 50

RESPONSE_INSTRUCTIONS = {
    "en": "Respond in English.",
    "ja": "日本語で回答してください。",
    "es": "Responde en español.",
    "zh": "请用中文回答。",
    "fr": "Répondez en français.",
    "it": "Rispondi in italiano.",
    "ko": "한국어로 답변해주세요.",
    "ar": "أجب باللغة العربية.",
    "hi": "हिंदी में उत्तर दें।",
    "ru": "Отвечайте на русском языке.",
    "id": "Jawab dalam bahasa Indonesia.",
}

_SHAPES = {
    "short": (
        "Write a SHORT summary of exactly 4-5 lines covering only the most critical "
        "points, decisions and action items, for a reader with one minute to spare."
    ),
    "medium": (
        "Write a MEDIUM-length summary: a one-paragraph overview, then the main "
        "topics and arguments, then decisions and next steps."
    ),
    "detailed": (
        "Write a DETAILED summary covering every major point with its context, "
        "keeping the order in which topics were discussed, and ending with all "
        "decisions, open questions and action items."
    ),
}


def build_summary_prompt(transcript: str, summary_type: str, language: str) -> str:
    instruction = RESPONSE_INSTRUCTIONS.get(language, RESPONSE_INSTRUCTIONS["en"])
    return (
        "You are an expert note-taker summarizing a live transcript.\n\n"
        f"{_SHAPES[summary_type]}\n\n"
        f"{instruction}\n\n"
        f"Transcript: {transcript}"
    )


class Summarizer:
    """Summarizes a finished transcript."""

    def __init__(self, llm: LanguageModel):
        self.llm = llm

    async def summarize(
        self,
        transcript: str,
        summary_type: str = "medium",
        language: str = "en",
    ) -> str:
        """Summarize ``transcript`` in the requested shape and language.

        Raises:
            ValueError: If the summary type is unknown or the transcript is too short
            RuntimeError: If the language model fails
        """
        if summary_type not in SUMMARY_TYPES:
            raise ValueError(
                f"Invalid summary type '{summary_type}'. "
                f"Must be one of: {', '.join(SUMMARY_TYPES)}"
            )

        text = transcript.strip()
        if len(text) < MIN_TRANSCRIPT_LENGTH:
            raise ValueError(
                "Transcript too short for summary generation "
                f"({len(text)} < {MIN_TRANSCRIPT_LENGTH} characters)"
            )

        logger.info("Generating %s summary (%s, %d chars)", summary_type, language, len(text))
        summary = await self.llm.complete(build_summary_prompt(text, summary_type, language))
        return summary.strip()
