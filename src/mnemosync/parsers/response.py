"""Response Parser: labeled-section text to ExtractedFacts.

Model (and heuristic) responses use a loose labeled format:

    VISITOR: Jane, Daughter
    SUMMARY: Jane visited and talked about the garden.
    DATES: Dentist on Feb 16
    ACTIONS: Water the plants
    NUDGES: Drink a glass of water
    TRANSCRIPT:
    You: "Hello Jane"
    Jane: "Hi Mum"

Each section runs until the next label or the end of the text. At the start
of a line labels match in any case; after other text on the same line only
the upper-case form counts ("VISITOR: Jane, Daughter SUMMARY: Good visit").
Labels may be wrapped in markdown emphasis. Missing or malformed sections
degrade to defaults; the parser never raises.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from mnemosync.core.models import (
    DEFAULT_SUMMARY,
    ConversationTurn,
    ExtractedFacts,
    RawActionMention,
    RawDateMention,
    VisitorIdentity,
    normalize_label,
)

logger = logging.getLogger(__name__)

LABELS = ("VISITOR", "SUMMARY", "DATES", "ACTIONS", "NUDGES", "TRANSCRIPT")

_LABEL_ALTERNATION = "|".join(LABELS)

# group 1: label opening a line (any case); group 2: upper-case label after whitespace
_LABEL = re.compile(
    r"(?:(?:^|(?<=\n))[ \t>#]*(?:\*\*|__)?[ \t]*(?i:(" + _LABEL_ALTERNATION + r"))"
    r"|(?<=\s)(?:\*\*|__)?(" + _LABEL_ALTERNATION + r"))"
    r"[ \t]*(?:\*\*|__)?[ \t]*:\s*(?:\*\*|__)?"
)

_NONE_MARKER = re.compile(r"\bnone\b", re.IGNORECASE)
_UNKNOWN_MARKER = re.compile(r"unknown|^none\b|^no one\b", re.IGNORECASE)
_LIST_SPLIT = re.compile(r"[\n,]")
_BULLET = re.compile(r"^(?:[-*•📅✅]|\d+[.)])\s*")
_TRANSCRIPT_LINE = re.compile(r'^(.+?):\s*"(.*)"$')


# =============================================================================
# Section Helpers
# =============================================================================


def split_sections(raw_text: str) -> dict[str, str]:
    """Split text into {LABEL: body}. The first occurrence of a label wins.

    TRANSCRIPT always runs to the end of the text, since its lines may start
    with a speaker called "Visitor".
    """
    sections: dict[str, str] = {}
    matches = list(_LABEL.finditer(raw_text))
    for index, match in enumerate(matches):
        label = (match.group(1) or match.group(2)).upper()
        if label == "TRANSCRIPT" and label not in sections:
            sections[label] = raw_text[match.end() :].strip()
            break
        end = matches[index + 1].start() if index + 1 < len(matches) else len(raw_text)
        if label not in sections:
            sections[label] = raw_text[match.end() : end].strip()
    return sections


def strip_bullet(text: str) -> str:
    """Remove leading list markers and emoji from one item.

    Example:
        >>> strip_bullet("📅 Dentist on Friday")
        'Dentist on Friday'
    """
    text = text.strip()
    previous = None
    while previous != text:
        previous = text
        text = _BULLET.sub("", text, count=1).strip()
    return text.strip("*_ ").strip()


def parse_list(value: str | None) -> list[str]:
    """Parse a DATES/ACTIONS/NUDGES body into individual items."""
    if not value or _NONE_MARKER.search(value):
        return []
    items = []
    for part in _LIST_SPLIT.split(value):
        item = strip_bullet(part)
        if item:
            items.append(item)
    return items


def parse_visitor(value: str | None) -> VisitorIdentity | None:
    """Parse the VISITOR body ("Jane, Daughter")."""
    if not value:
        return None
    line = strip_bullet(value.splitlines()[0])
    if not line or _UNKNOWN_MARKER.search(line):
        return None

    name, _, relation = line.partition(",")
    name = name.strip("*_ ")
    relation = relation.strip("*_ ").rstrip(".")
    if not name:
        return None
    return VisitorIdentity(name=name, relation=relation or "visitor")


def parse_transcript(value: str | None) -> list[tuple[str, str]] | None:
    """Parse TRANSCRIPT lines of the form `Speaker: "text"`.

    Lines that do not match are skipped.
    """
    if value is None:
        return None
    pairs = []
    for line in value.splitlines():
        match = _TRANSCRIPT_LINE.match(strip_bullet(line))
        if match:
            pairs.append((match.group(1).strip(), match.group(2).strip()))
    return pairs


# =============================================================================
# Public API
# =============================================================================


def parse(raw_text: str) -> ExtractedFacts:
    """Parse a labeled-section response into ExtractedFacts.

    Args:
        raw_text: Raw response text from any tier.

    Returns:
        ExtractedFacts. Absent sections yield None / empty lists and the
        default summary.

    Example:
        >>> facts = parse("VISITOR: Jane, Daughter\\nSUMMARY: Good visit\\nDATES: None\\nACTIONS: None")
        >>> facts.visitor.name, facts.visitor.relation, facts.summary
        ('Jane', 'Daughter', 'Good visit')
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        return ExtractedFacts()

    sections = split_sections(raw_text)
    if not sections:
        logger.debug("Response contained no labeled sections")

    summary = " ".join(sections.get("SUMMARY", "").split()) or DEFAULT_SUMMARY

    return ExtractedFacts(
        visitor=parse_visitor(sections.get("VISITOR")),
        summary=summary,
        dates=[RawDateMention(text=item, source_segment=item) for item in parse_list(sections.get("DATES"))],
        actions=[RawActionMention(text=item, source_segment=item) for item in parse_list(sections.get("ACTIONS"))],
        nudges=parse_list(sections.get("NUDGES")),
        corrected_transcript=parse_transcript(sections.get("TRANSCRIPT")),
    )


def merge_heuristic_dates(facts: ExtractedFacts, heuristic_dates: Sequence[str]) -> ExtractedFacts:
    """Union model dates with heuristic dates.

    Model dates come first and win. A heuristic date is added only when it
    neither equals nor overlaps (substring either way, after normalisation)
    a date already present.

    Args:
        facts: Parsed response.
        heuristic_dates: Dates from the heuristic extractor.

    Returns:
        New ExtractedFacts with the merged date list.
    """
    merged = list(facts.dates)
    seen = [normalize_label(m.text) for m in merged]

    for text in heuristic_dates:
        key = normalize_label(text)
        if not key or any(key == s or key in s or s in key for s in seen):
            continue
        merged.append(RawDateMention(text=text, source_segment=text))
        seen.append(key)

    if len(merged) == len(facts.dates):
        return facts
    return facts.model_copy(update={"dates": merged})


def apply_transcript_corrections(
    turns: Sequence[ConversationTurn],
    corrections: Sequence[tuple[str, str]] | None,
) -> list[ConversationTurn]:
    """Overwrite speaker and text of turns by ordinal position.

    Corrections beyond the number of turns are ignored. Timestamps are kept.
    """
    corrected = list(turns)
    for index, (speaker, text) in enumerate(corrections or []):
        if index >= len(corrected):
            break
        corrected[index] = corrected[index].model_copy(update={"speaker": speaker, "text": text})
    return corrected
