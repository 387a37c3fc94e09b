"""Tests for prompt templates and the prompt registry."""

from __future__ import annotations

import pytest

from mnemosync.ai.prompts import (
    CONVERSATION_SUMMARY_PROMPT,
    SCENE_ANALYSIS_PROMPT,
    PromptCategory,
    get_prompt,
    list_prompts,
)


class TestPromptTemplates:
    """Tests for rendering."""

    def test_conversation_prompt(self) -> None:
        prompt = CONVERSATION_SUMMARY_PROMPT.render(
            patient_name="Rose",
            visitor_name="Jane",
            visitor_relation="daughter",
            conversation='You: "Hello Jane"',
        )

        assert '"Visitor" = Jane (daughter)' in prompt
        assert 'You: "Hello Jane"' in prompt
        for label in ("VISITOR:", "SUMMARY:", "DATES:", "ACTIONS:", "TRANSCRIPT:"):
            assert label in prompt
        assert "$" not in prompt

    def test_scene_prompt(self) -> None:
        prompt = SCENE_ANALYSIS_PROMPT.render(patient_name="Rose", history="No one has been seen yet.")

        assert "No one has been seen yet." in prompt
        assert "NUDGES:" in prompt
        assert "New Friend" in prompt

    def test_missing_variable(self) -> None:
        with pytest.raises(ValueError, match="history"):
            SCENE_ANALYSIS_PROMPT.render(patient_name="Rose")


class TestPromptRegistry:
    """Tests for prompt lookup."""

    def test_get_prompt(self) -> None:
        assert get_prompt("scene_analysis_v1") is SCENE_ANALYSIS_PROMPT

    def test_unknown_prompt(self) -> None:
        with pytest.raises(KeyError, match="conversation_summary_v1"):
            get_prompt("does_not_exist")

    def test_list_by_category(self) -> None:
        assert list_prompts(PromptCategory.CONVERSATION) == [CONVERSATION_SUMMARY_PROMPT]
        assert len(list_prompts()) >= 2
