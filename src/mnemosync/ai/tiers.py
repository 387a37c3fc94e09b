"""Tiered Analyzer: primary -> secondary information source fallback.

The analyzer tries the primary source once. If it fails and a secondary
source is configured, the secondary is tried once. There is no retry loop;
periodic re-scans are the caller's job.

Every failure is classified. A failure whose message mentions "429" or
"quota", or that is an AIRateLimitError / AIQuotaExceededError, marks the
whole call as rate limited. The flag is kept even if a later tier succeeds.

The heuristic tier is not part of this component. Conversation analysis
applies it explicitly when ``analyze`` returns a failure; scene analysis has
no heuristic tier.

Example:
    >>> analyzer = TieredAnalyzer()
    >>> result = await analyzer.analyze(request, primary, secondary)
    >>> if result.ok:
    ...     facts = parse(result.raw_text)
    ... elif result.quota_exceeded:
    ...     show_status("Quota exceeded: please wait a minute before scanning again.")
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Literal, Protocol, Union, runtime_checkable

from mnemosync.ai.client import AIQuotaExceededError, AIRateLimitError
from mnemosync.utils.logging import LogContext

logger = logging.getLogger(__name__)

RATE_LIMIT_PATTERN = re.compile(r"429|quota", re.IGNORECASE)


# =============================================================================
# Request / Source
# =============================================================================


@dataclass(frozen=True)
class AnalysisRequest:
    """One analysis cycle's input. Built per cycle, never shared.

    Attributes:
        purpose: "scene" or "conversation".
        prompt: Fully rendered prompt text.
        image: JPEG (or other) image bytes for scene analysis.
        mime_type: MIME type of ``image``.
        context: Plain text the prompt was built from (history or
            transcript); used by the heuristic tier.
    """

    purpose: Literal["scene", "conversation"]
    prompt: str
    image: bytes | None = None
    mime_type: str = "image/jpeg"
    context: str = ""


@runtime_checkable
class InformationSource(Protocol):
    """Anything that can turn an AnalysisRequest into response text."""

    name: str

    async def invoke(self, request: AnalysisRequest) -> str: ...


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class Success:
    """A tier produced response text."""

    raw_text: str
    source: str
    used_fallback: bool = False
    quota_exceeded: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """Every attempted tier failed."""

    message: str
    quota_exceeded: bool = False

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class QuotaExceeded(Failure):
    """Every attempted tier failed and at least one was rate limited."""

    quota_exceeded: bool = True


AnalysisResult = Union[Success, Failure]


def is_rate_limited(error: BaseException) -> bool:
    """Check whether an error signals rate limiting or an exhausted quota."""
    if isinstance(error, (AIRateLimitError, AIQuotaExceededError)):
        return True
    return bool(RATE_LIMIT_PATTERN.search(str(error)))


# =============================================================================
# Analyzer
# =============================================================================


class TieredAnalyzer:
    """Orchestrates the primary and secondary information sources.

    Holds no state between calls; one instance can serve both the scene and
    the conversation companion.
    """

    async def analyze(
        self,
        request: AnalysisRequest,
        primary: InformationSource,
        secondary: InformationSource | None = None,
    ) -> AnalysisResult:
        """Run the request through the configured tiers.

        Args:
            request: The analysis request.
            primary: First tier, always attempted.
            secondary: Fallback tier, attempted only if primary failed.

        Returns:
            Success, Failure or QuotaExceeded. Never raises for source errors.
        """
        tiers = [primary] if secondary is None else [primary, secondary]
        quota_exceeded = False
        last_message = "No information source configured"

        for index, source in enumerate(tiers):
            try:
                with LogContext(f"{request.purpose} analysis via {source.name}", failure_level=logging.DEBUG, logger=logger):
                    raw_text = await source.invoke(request)
            except Exception as e:
                if is_rate_limited(e):
                    quota_exceeded = True
                last_message = str(e) or type(e).__name__
                remaining = "falling back" if index + 1 < len(tiers) else "no tiers left"
                logger.warning(f"{request.purpose} analysis: {source.name} failed ({type(e).__name__}), {remaining}")
                continue

            if index > 0:
                logger.info(f"{request.purpose} analysis answered by fallback source {source.name}")
            return Success(
                raw_text=raw_text,
                source=source.name,
                used_fallback=index > 0,
                quota_exceeded=quota_exceeded,
            )

        if quota_exceeded:
            return QuotaExceeded(message=last_message)
        return Failure(message=last_message)
