"""Text parsers: date phrases, heuristic extraction and model responses."""

from mnemosync.parsers.dates import ResolvedDate, resolve, resolve_detailed
from mnemosync.parsers.heuristics import HeuristicMentions, extract, fallback_response
from mnemosync.parsers.response import apply_transcript_corrections, merge_heuristic_dates, parse

__all__ = [
    "HeuristicMentions",
    "ResolvedDate",
    "apply_transcript_corrections",
    "extract",
    "fallback_response",
    "merge_heuristic_dates",
    "parse",
    "resolve",
    "resolve_detailed",
]
