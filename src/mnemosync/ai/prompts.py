"""Prompt templates for scene and conversation analysis.

Every prompt sent to Gemini is defined here. Both prompts ask for the same
labeled-section answer format so that model output, whichever tier produced
it, goes through one parser.

Example:
    >>> from mnemosync.ai.prompts import get_prompt
    >>> template = get_prompt("conversation_summary_v1")
    >>> prompt = template.render(
    ...     patient_name="Rose",
    ...     visitor_name="Jane",
    ...     visitor_relation="daughter",
    ...     conversation='You: "Hello"',
    ... )
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass, field
from enum import Enum
from string import Template
from typing import Any


class PromptCategory(str, Enum):
    """What a prompt is used for."""

    SCENE = "scene"
    CONVERSATION = "conversation"


@dataclass(frozen=True)
class PromptTemplate:
    """A versioned prompt with ``$placeholder`` variables.

    Attributes:
        id: Unique identifier (e.g., "scene_analysis_v1").
        category: Which analysis uses the prompt.
        version: Version string for tracking changes.
        template: Prompt text with ``string.Template`` placeholders.
        required_variables: Variables that must be supplied to ``render``.
        description: Human-readable purpose.
    """

    id: str
    category: PromptCategory
    version: str
    template: str
    required_variables: frozenset[str] = field(default_factory=frozenset)
    description: str = ""

    def render(self, **variables: Any) -> str:
        """Substitute variables into the template.

        Raises:
            ValueError: If a required variable is missing.
        """
        missing = sorted(v for v in self.required_variables if v not in variables)
        if missing:
            raise ValueError(f"Missing required variables for prompt '{self.id}': {missing}")
        return Template(self.template).safe_substitute(variables).strip()


# =============================================================================
# Templates
# =============================================================================


SCENE_ANALYSIS_PROMPT = PromptTemplate(
    id="scene_analysis_v1",
    category=PromptCategory.SCENE,
    version="1.0.0",
    required_variables=frozenset({"patient_name", "history"}),
    description="Identify who is in a camera image and suggest routine reminders.",
    template=textwrap.dedent(
        """
        You are Mnemosync, a companion that helps $patient_name, who lives with
        dementia, remember faces and conversations.

        Look at the attached camera image.

        Context (people already known and recent sightings):
        $history

        Instructions:
        1. Decide whether a person is visible.
        2. If so, match them against the people in the context.
        3. If matched, give their name, their relationship to $patient_name and a
           brief reminder of past conversations.
        4. If the person is new, use the name "New Friend" and suggest getting to
           know them.
        5. Add routine reminders that fit the time of day.

        Respond in this exact format and nothing else:
        VISITOR: [name, relationship] or "Unknown" if no person is visible
        SUMMARY: [one or two gentle sentences for $patient_name]
        NUDGES: [comma-separated routine reminders, or "None"]
        """
    ),
)


CONVERSATION_SUMMARY_PROMPT = PromptTemplate(
    id="conversation_summary_v1",
    category=PromptCategory.CONVERSATION,
    version="1.0.0",
    required_variables=frozenset({"patient_name", "visitor_name", "visitor_relation", "conversation"}),
    description="Summarise a conversation and extract dates, promises and speaker fixes.",
    template=textwrap.dedent(
        """
        You are helping $patient_name, who lives with dementia, remember a
        conversation they just had.

        The conversation was between:
        - "You" = $patient_name
        - "Visitor" = $visitor_name ($visitor_relation)

        Conversation:
        $conversation

        Write a gentle, caring summary for $patient_name explaining:
        1. WHO they were talking to (name and relationship if known)
        2. WHAT they discussed, in simple terms
        3. Anything IMPORTANT to remember (dates, promises, tasks)

        Also check whether the "You" and "Visitor" speakers are attributed
        correctly. For example, whoever says "Hi $patient_name" must be the
        visitor. Fix any mistakes in the transcript.

        Respond in this exact format:
        VISITOR: [visitor's name and relationship to $patient_name, or "Unknown visitor"]
        SUMMARY: [a warm, simple 1-2 sentence summary spoken directly to $patient_name]
        DATES: [dates, appointments or deadlines mentioned, or "None"]
        ACTIONS: [promises made or tasks to do, or "None"]
        TRANSCRIPT:
        [Speaker]: "Corrected text"
        """
    ),
)


# =============================================================================
# Registry
# =============================================================================

_PROMPT_REGISTRY: dict[str, PromptTemplate] = {}


def register_prompt(template: PromptTemplate) -> None:
    """Add a template to the registry, replacing any with the same id."""
    _PROMPT_REGISTRY[template.id] = template


def get_prompt(prompt_id: str) -> PromptTemplate:
    """Look up a template by id.

    Raises:
        KeyError: If no template has that id.
    """
    if prompt_id not in _PROMPT_REGISTRY:
        available = ", ".join(sorted(_PROMPT_REGISTRY))
        raise KeyError(f"Unknown prompt '{prompt_id}'. Available: {available}")
    return _PROMPT_REGISTRY[prompt_id]


def list_prompts(category: PromptCategory | None = None) -> list[PromptTemplate]:
    """List registered templates, optionally filtered by category."""
    templates = sorted(_PROMPT_REGISTRY.values(), key=lambda t: t.id)
    if category is None:
        return templates
    return [t for t in templates if t.category == category]


for _template in (SCENE_ANALYSIS_PROMPT, CONVERSATION_SUMMARY_PROMPT):
    register_prompt(_template)
