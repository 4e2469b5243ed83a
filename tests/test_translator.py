"""Tests for translator module."""

import asyncio

import pytest

from conftest import FakeLanguageModel
from live_translate.translator import (
    ContextWindow,
    TranslationContextManager,
    TranslationFailed,
    build_translation_prompt,
    language_name,
)


class TestContextWindow:
    """Tests for the bounded context window."""

    def test_fifo_eviction(self):
        """Test the oldest translation is evicted at capacity."""
        window = ContextWindow(3)
        for text in ("t1", "t2", "t3", "t4"):
            window.push(text)

        assert window.items() == ["t2", "t3", "t4"]
        assert len(window) == 3

    def test_clear(self):
        """Test clear empties the window."""
        window = ContextWindow(2)
        window.push("t1")
        window.clear()
        assert window.items() == []

    def test_invalid_capacity(self):
        """Test zero capacity rejected."""
        with pytest.raises(ValueError, match="capacity"):
            ContextWindow(0)


class TestTranslationPrompt:
    """Tests for prompt construction."""

    def test_first_segment_prompt(self):
        """Test the opening prompt has no context block."""
        prompt = build_translation_prompt("Hello world", "ja")

        assert "English text into Japanese" in prompt
        assert "beginning of a live transcription" in prompt
        assert 'Text to translate: "Hello world"' in prompt
        assert '"""' not in prompt

    def test_continuation_prompt_includes_context(self):
        """Test prior translations appear oldest first."""
        prompt = build_translation_prompt("How are you", "ja", ["一", "二"])

        assert '"""\n一\n二\n"""' in prompt
        assert "Continue naturally" in prompt
        assert "Do not" in prompt and "repeat" in prompt

    def test_unknown_language_passes_through(self):
        """Test unknown codes are used verbatim."""
        assert language_name("sw") == "sw"
        assert "into sw" in build_translation_prompt("Hi", "sw")


class TestTranslationContextManager:
    """Tests for incremental translation."""

    @pytest.mark.asyncio
    async def test_context_carried_into_next_prompt(self):
        """Test the first translation is context for the second."""
        llm = FakeLanguageModel({"Hello world": "こんにちは世界", "How are you": "お元気ですか"})
        manager = TranslationContextManager(llm, target_language="ja")

        first = await manager.translate_new("Hello world")
        second = await manager.translate_new(" How are you")

        assert first.translated_text == "こんにちは世界"
        assert first.position == 0
        assert second.position == 1
        assert second.source_text == "How are you"
        assert "こんにちは世界" not in llm.prompts[0]
        assert "こんにちは世界" in llm.prompts[1]
        assert manager.translation_text == "こんにちは世界 お元気ですか"

    @pytest.mark.asyncio
    async def test_window_keeps_last_three(self):
        """Test only the three most recent translations are sent."""
        llm = FakeLanguageModel()
        manager = TranslationContextManager(llm)

        for text in ("a", "b", "c", "d", "e"):
            await manager.translate_new(text)

        last_prompt = llm.prompts[-1]
        assert "<a>" not in last_prompt
        assert "<b>\n<c>\n<d>" in last_prompt
        assert manager.window.items() == ["<c>", "<d>", "<e>"]

    @pytest.mark.asyncio
    async def test_blank_suffix_is_noop(self):
        """Test whitespace-only suffix issues no request."""
        llm = FakeLanguageModel()
        manager = TranslationContextManager(llm)

        assert await manager.translate_new("   ") is None
        assert llm.prompts == []
        assert manager.segments == []

    @pytest.mark.asyncio
    async def test_calls_are_serialized(self):
        """Test concurrent suffixes never overlap and keep submission order."""
        llm = FakeLanguageModel(delay=0.01)
        manager = TranslationContextManager(llm)

        segments = await asyncio.gather(
            manager.translate_new("one"),
            manager.translate_new("two"),
            manager.translate_new("three"),
        )

        assert llm.max_in_flight == 1
        assert [s.position for s in segments] == [0, 1, 2]
        assert "<one>\n<two>" in llm.prompts[2]

    @pytest.mark.asyncio
    async def test_failure_drops_suffix_without_retry(self):
        """Test a failed suffix is dropped and not resubmitted."""
        llm = FakeLanguageModel(fail_on={"two"})
        manager = TranslationContextManager(llm)

        await manager.translate_new("one")
        with pytest.raises(TranslationFailed):
            await manager.translate_new("two")
        third = await manager.translate_new("three")

        assert len(llm.prompts) == 3
        assert third.position == 1
        assert manager.window.items() == ["<one>", "<three>"]

    @pytest.mark.asyncio
    async def test_empty_completion_fails(self):
        """Test an empty model reply is treated as a failure."""
        llm = FakeLanguageModel({"one": "  "})
        manager = TranslationContextManager(llm)

        with pytest.raises(TranslationFailed, match="empty"):
            await manager.translate_new("one")
        assert manager.segments == []

    @pytest.mark.asyncio
    async def test_target_language_override(self):
        """Test per-call target language."""
        llm = FakeLanguageModel()
        manager = TranslationContextManager(llm, target_language="ja")

        segment = await manager.translate_new("Hello", target_language="es")

        assert segment.target_language == "es"
        assert "into Spanish" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_clear_resets_context(self):
        """Test clear drops segments and context."""
        llm = FakeLanguageModel()
        manager = TranslationContextManager(llm)
        await manager.translate_new("one")

        manager.clear()
        segment = await manager.translate_new("two")

        assert segment.position == 0
        assert "<one>" not in llm.prompts[-1]

    @pytest.mark.asyncio
    async def test_result_after_clear_discarded(self):
        """Test a translation finishing after clear is not appended."""
        llm = FakeLanguageModel(delay=0.02)
        manager = TranslationContextManager(llm)

        task = asyncio.create_task(manager.translate_new("one"))
        await asyncio.sleep(0)
        manager.clear()

        assert await task is None
        assert manager.segments == []
