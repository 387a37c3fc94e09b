"""Heuristic Extractor: deterministic, offline date and task extraction.

This is the last-resort tier of conversation analysis and, even when a model
answered, a supplement that fills gaps the model left ("DATES: None").

Extraction rules:

- Contextual tasks: the text is split on "and" / "then" / "also"; inside
  each segment "<3-30 letters> <on|at|by|for|this> <time term>[ <day>]"
  becomes "<task> on <time term>" ("see the doctor on Friday").
- Explicit dates: month name + day in either order ("feb 16",
  "16th of February"), unless already part of a task.
- Relative dates: "today", "tonight", "tomorrow", "next week", "next month",
  only when no explicit month/day mention was found.
- Actions: text after "remember to", "don't forget to", "remind me to".

Everything is de-duplicated case-insensitively in first-seen order.

Example:
    >>> mentions = extract("Remind me to take my pills and see the doctor on Friday")
    >>> mentions.actions
    ['take my pills']
    >>> mentions.dates
    ['see the doctor on Friday']
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from mnemosync.core.models import VisitorIdentity
from mnemosync.parsers.dates import MONTH_NAME, ORDINAL

# =============================================================================
# Patterns
# =============================================================================

TIME_TERMS = (
    r"(?:tomorrow|tonight|today|next\s+(?:week|month)"
    r"|monday|tuesday|wednesday|thursday|friday|saturday|sunday"
    r"|january|february|march|april|may|june|july|august|september|october|november|december"
    r"|jan|feb|mar|apr|jun|jul|aug|sep|oct|nov|dec)"
)

SEGMENT_SPLIT = re.compile(r"\b(?:and|then|also)\b", re.IGNORECASE)

TASK_PATTERN = re.compile(
    r"\b([a-zA-Z\s]{3,30})\s+(on|at|by|for|this)\s+(" + TIME_TERMS + r"(?:\s+\d{1,2}" + ORDINAL + r")?)\b",
    re.IGNORECASE,
)

ACTION_PATTERN = re.compile(
    r"\b(?:remember to|don't forget to|remind me to)\s+([a-zA-Z\s]{3,40})",
    re.IGNORECASE,
)

EXPLICIT_DATE_PATTERNS = [
    re.compile(r"\b" + MONTH_NAME + r"\.?\s+\d{1,2}" + ORDINAL + r"\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}" + ORDINAL + r"\s+(?:of\s+)?" + MONTH_NAME + r"\b", re.IGNORECASE),
]

RELATIVE_DATE_PATTERN = re.compile(
    r"\b(?:today|tonight|tomorrow|next\s+week|next\s+month)\b",
    re.IGNORECASE,
)

# Task heads that are question words or filler, not tasks
TASK_STOPWORDS = frozenset({"what", "when", "how", "going"})

ACTION_TRIGGERS = ("remind", "remember", "don't forget")


@dataclass
class HeuristicMentions:
    """Date and action strings found in a piece of text."""

    dates: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.dates and not self.actions


# =============================================================================
# Helpers
# =============================================================================


def _normalize_quotes(text: str) -> str:
    return text.replace("’", "'").replace("‘", "'")


def _add_unique(items: list[str], candidate: str) -> None:
    candidate = " ".join(candidate.split())
    if candidate and candidate.lower() not in (item.lower() for item in items):
        items.append(candidate)


def _contained(needle: str, haystack: list[str]) -> bool:
    lowered = needle.lower()
    return any(lowered in item.lower() for item in haystack)


def _tasks_in_segment(segment: str) -> list[str]:
    tasks = []
    for match in TASK_PATTERN.finditer(segment):
        task = " ".join(match.group(1).split())
        when = " ".join(match.group(3).split())
        if len(task) <= 2 or task.lower() in TASK_STOPWORDS:
            continue
        tasks.append(f"{task} on {when}")
    return tasks


# =============================================================================
# Public API
# =============================================================================


def extract(text: str) -> HeuristicMentions:
    """Extract date and action mentions from raw conversation text.

    Pure and deterministic; never raises.

    Args:
        text: Transcript or utterance text.

    Returns:
        HeuristicMentions with dates (tasks first, then explicit dates, then
        relative dates) and actions.
    """
    text = _normalize_quotes(text or "")
    tasks: list[str] = []
    actions: list[str] = []

    for segment in SEGMENT_SPLIT.split(text):
        segment = segment.strip()
        if not segment:
            continue
        for task in _tasks_in_segment(segment):
            _add_unique(tasks, task)
        for match in ACTION_PATTERN.finditer(segment):
            _add_unique(actions, match.group(1))

    dates = list(tasks)

    explicit: list[str] = []
    for pattern in EXPLICIT_DATE_PATTERNS:
        for match in pattern.finditer(text):
            _add_unique(explicit, match.group(0))
    for mention in explicit:
        if not _contained(mention, tasks):
            _add_unique(dates, mention)

    if not explicit:
        for match in RELATIVE_DATE_PATTERN.finditer(text):
            if not _contained(match.group(0), dates):
                _add_unique(dates, match.group(0))

    return HeuristicMentions(dates=dates, actions=actions)


def fallback_response(text: str, visitor: VisitorIdentity | None = None) -> str:
    """Render heuristic findings in the labeled-section response format.

    Lets the heuristic tier flow through the same parser as model output.

    Args:
        text: Conversation text to analyse.
        visitor: Known visitor, if any.

    Returns:
        Text with VISITOR, SUMMARY, DATES and ACTIONS sections.
    """
    mentions = extract(text)
    name = visitor.name if visitor else "the visitor"
    visitor_line = f"{visitor.name}, {visitor.relation}" if visitor else "Unknown"

    dates = ", ".join(mentions.dates) if mentions.dates else "None"
    if mentions.actions:
        actions = ", ".join(mentions.actions)
    elif any(trigger in _normalize_quotes(text).lower() for trigger in ACTION_TRIGGERS):
        # A reminder was asked for but its wording did not match
        actions = " ".join(text.split())
    else:
        actions = "None"

    topic = f"dates: {dates}" if mentions.dates else "various topics"
    summary = f"You had a conversation with {name}. You discussed {topic}."

    return "\n".join(
        [
            f"VISITOR: {visitor_line}",
            f"SUMMARY: {summary}",
            f"DATES: {dates}",
            f"ACTIONS: {actions}",
        ]
    )
