"""Gemini information sources, prompts and the tiered analyzer."""

from mnemosync.ai.client import (
    AIClientError,
    AIQuotaExceededError,
    AIRateLimitError,
    AIUnavailableError,
    GeminiSource,
    build_sources,
)
from mnemosync.ai.prompts import CONVERSATION_SUMMARY_PROMPT, SCENE_ANALYSIS_PROMPT, get_prompt
from mnemosync.ai.tiers import (
    AnalysisRequest,
    AnalysisResult,
    Failure,
    InformationSource,
    QuotaExceeded,
    Success,
    TieredAnalyzer,
)

__all__ = [
    "AIClientError",
    "AIQuotaExceededError",
    "AIRateLimitError",
    "AIUnavailableError",
    "AnalysisRequest",
    "AnalysisResult",
    "CONVERSATION_SUMMARY_PROMPT",
    "Failure",
    "GeminiSource",
    "InformationSource",
    "QuotaExceeded",
    "SCENE_ANALYSIS_PROMPT",
    "Success",
    "TieredAnalyzer",
    "build_sources",
    "get_prompt",
]
