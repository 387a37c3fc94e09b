"""Gemini information source for Mnemosync.

This module is the only place that talks to google-generativeai. It exposes
``GeminiSource``, an ``InformationSource`` that sends one prompt (plus an
optional camera still) to one Gemini model and returns the response text.

SDK errors are mapped onto a typed exception hierarchy so the tiered
analyzer can tell rate limits apart from other failures.

Example:
    >>> from mnemosync.ai.client import build_sources
    >>> primary, secondary = build_sources()
    >>> text = await primary.invoke(request)

Security Rules:
- NEVER log API keys
- NEVER log prompts, transcripts or responses; lengths and timings only
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Literal

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from mnemosync.config import AIConfig, APIKeyNotFoundError, AppConfig, get_api_key, get_config
from mnemosync.utils.logging import RedactingFilter

if TYPE_CHECKING:
    from mnemosync.ai.tiers import AnalysisRequest


logger = logging.getLogger(__name__)
logger.addFilter(RedactingFilter())


# =============================================================================
# Exception Hierarchy
# =============================================================================


class AIClientError(Exception):
    """A Gemini tier could not produce an answer.

    Subclasses only change the default message and whether a later scan
    might succeed.

    Attributes:
        message: Safe to log. Never contains prompt text or keys.
        retriable: True if the same request could work a little later.
        original_error: The SDK exception, when there was one.
    """

    default_message = "Gemini request failed"
    retriable = False

    def __init__(
        self,
        message: str | None = None,
        original_error: Exception | None = None,
        retriable: bool | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.original_error = original_error
        if retriable is not None:
            self.retriable = retriable
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class AIUnavailableError(AIClientError):
    """No model tier can be used: AI is switched off or there is no key.

    Attributes:
        reason: "disabled", "no_api_key" or "offline".
    """

    REASON_MESSAGES = {
        "disabled": "AI features are disabled in configuration",
        "no_api_key": "No Gemini API key configured. Set GEMINI_API_KEY or run 'mnemosync config set-key'",
        "offline": "Cannot reach the Gemini API",
    }

    def __init__(self, reason: Literal["disabled", "no_api_key", "offline"], message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or self.REASON_MESSAGES.get(reason, f"AI unavailable: {reason}"))


class AIAuthenticationError(AIClientError):
    default_message = "Gemini rejected the API key. Check it with 'mnemosync config show'."


class AIRateLimitError(AIClientError):
    """HTTP 429: too many scans or summaries in a short time."""

    default_message = "Rate limited by Gemini (429)"
    retriable = True


class AIQuotaExceededError(AIClientError):
    """The key's daily or billing quota is used up."""

    default_message = "Gemini quota exhausted"


class AIBadRequestError(AIClientError):
    default_message = "Gemini rejected the request"


class AIServerError(AIClientError):
    """Gemini answered with a 5xx.

    Attributes:
        status_code: HTTP status, when the SDK reported one.
    """

    default_message = "Gemini is temporarily unavailable"
    retriable = True

    def __init__(
        self,
        message: str | None = None,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error)
        self.status_code = status_code


class AITimeoutError(AIClientError):
    retriable = True

    def __init__(self, timeout_seconds: float, original_error: Exception | None = None) -> None:
        super().__init__(f"No answer from Gemini within {timeout_seconds} seconds", original_error)
        self.timeout_seconds = timeout_seconds


class ModelNotAvailableError(AIClientError):
    def __init__(self, model_name: str, original_error: Exception | None = None) -> None:
        super().__init__(f"Model '{model_name}' is not available to this key", original_error)
        self.model_name = model_name


class ContentBlockedError(AIClientError):
    """Gemini's safety filters withheld the answer.

    Attributes:
        blocked_reason: Reason reported by the API, if any.
    """

    default_message = "Gemini withheld the answer (safety filter)"

    def __init__(self, blocked_reason: str | None = None, original_error: Exception | None = None) -> None:
        super().__init__(original_error=original_error)
        self.blocked_reason = blocked_reason


# SDK exception types, checked in order. ResourceExhausted is split on its
# message before this table is consulted.
SDK_ERROR_TYPES: list[tuple[type[Exception], type[AIClientError]]] = [
    (google_exceptions.InvalidArgument, AIBadRequestError),
    (google_exceptions.PermissionDenied, AIAuthenticationError),
    (google_exceptions.Unauthenticated, AIAuthenticationError),
    (google_exceptions.NotFound, ModelNotAvailableError),
    (google_exceptions.DeadlineExceeded, AITimeoutError),
    (google_exceptions.InternalServerError, AIServerError),
    (google_exceptions.ServiceUnavailable, AIServerError),
]

# Message fragments for errors that arrive without a useful type
MESSAGE_HINTS: list[tuple[tuple[str, ...], type[AIClientError]]] = [
    (("429", "rate limit"), AIRateLimitError),
    (("quota", "billing"), AIQuotaExceededError),
    (("blocked", "safety"), ContentBlockedError),
    (("401", "403", "unauthorized"), AIAuthenticationError),
    (("timeout", "deadline"), AITimeoutError),
    (("500", "502", "503"), AIServerError),
]


# =============================================================================
# Gemini Source
# =============================================================================


class GeminiSource:
    """One Gemini model used as an information source tier.

    The SDK is configured with the API key once per instance; the model
    handle is created lazily on first use.

    Attributes:
        name: Tier name used in logs and results ("primary", "secondary").
        model_name: Gemini model identifier.
    """

    def __init__(
        self,
        name: str,
        model_name: str,
        api_key: str,
        ai_config: AIConfig | None = None,
    ) -> None:
        self.name = name
        self.model_name = model_name
        self._ai_config = ai_config or AIConfig()
        self._model: Any = None
        self._logger = logging.getLogger(f"{__name__}.GeminiSource")
        self._logger.addFilter(RedactingFilter())

        genai.configure(api_key=api_key)

    def _get_model(self) -> Any:
        if self._model is None:
            self._model = genai.GenerativeModel(model_name=self.model_name)
        return self._model

    def _build_contents(self, request: AnalysisRequest) -> list[Any]:
        parts: list[Any] = [request.prompt]
        if request.image is not None:
            parts.append({"mime_type": request.mime_type, "data": request.image})
        return parts

    async def invoke(self, request: AnalysisRequest) -> str:
        """Send the request to the model and return the response text.

        Raises:
            AIClientError: Mapped SDK failure.
        """
        started = time.perf_counter()
        try:
            response = await self._get_model().generate_content_async(
                self._build_contents(request),
                generation_config={
                    "temperature": self._ai_config.temperature,
                    "max_output_tokens": self._ai_config.max_output_tokens,
                },
                request_options={"timeout": self._ai_config.timeout_seconds},
            )
        except Exception as e:
            mapped = self._map_exception(e)
            self._logger.warning(f"{self.name} ({self.model_name}) failed: {type(mapped).__name__}")
            raise mapped from e

        # .text raises ValueError when every candidate was filtered out
        try:
            text = response.text
        except ValueError as e:
            feedback = getattr(response, "prompt_feedback", None)
            reason = getattr(feedback, "block_reason", None)
            raise ContentBlockedError(str(reason) if reason else None, original_error=e) from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._logger.info(f"{self.name} ({self.model_name}) answered {len(text)} chars in {elapsed_ms:.0f}ms")
        return text

    def _map_exception(self, error: Exception) -> AIClientError:
        """Classify an SDK exception; unknown errors become a plain AIClientError."""
        if isinstance(error, AIClientError):
            return error

        lowered = str(error).lower()
        if isinstance(error, google_exceptions.ResourceExhausted):
            error_cls: type[AIClientError] = AIQuotaExceededError if "quota" in lowered else AIRateLimitError
            return self._instantiate(error_cls, error)

        for sdk_type, error_cls in SDK_ERROR_TYPES:
            if isinstance(error, sdk_type):
                return self._instantiate(error_cls, error)

        for fragments, error_cls in MESSAGE_HINTS:
            if any(fragment in lowered for fragment in fragments):
                return self._instantiate(error_cls, error)

        return AIClientError(str(error) or type(error).__name__, original_error=error)

    def _instantiate(self, error_cls: type[AIClientError], error: Exception) -> AIClientError:
        if error_cls is AITimeoutError:
            return AITimeoutError(self._ai_config.timeout_seconds, original_error=error)
        if error_cls is ModelNotAvailableError:
            return ModelNotAvailableError(self.model_name, original_error=error)
        if error_cls is AIServerError:
            code = getattr(error, "code", None)
            return AIServerError(status_code=int(code) if isinstance(code, int) else None, original_error=error)
        if error_cls is AIBadRequestError:
            return AIBadRequestError(str(error), original_error=error)
        return error_cls(original_error=error)


# =============================================================================
# Module-Level Functions
# =============================================================================


def build_sources(config: AppConfig | None = None) -> tuple[GeminiSource, GeminiSource | None]:
    """Create the primary and (optional) secondary Gemini sources.

    Args:
        config: Configuration override.

    Returns:
        (primary, secondary). secondary is None when no secondary model is
        configured.

    Raises:
        AIUnavailableError: If AI is disabled or no API key is configured.
    """
    config = config or get_config()
    if not config.ai.is_enabled():
        raise AIUnavailableError("disabled")

    try:
        api_key = get_api_key().get_secret_value()
    except APIKeyNotFoundError as e:
        raise AIUnavailableError("no_api_key") from e

    primary = GeminiSource("primary", config.ai.primary_model, api_key, config.ai)
    secondary = None
    if config.ai.secondary_model:
        secondary = GeminiSource("secondary", config.ai.secondary_model, api_key, config.ai)

    logger.info(
        f"Gemini sources ready: primary={config.ai.primary_model}, "
        f"secondary={config.ai.secondary_model or 'none'}"
    )
    return primary, secondary
