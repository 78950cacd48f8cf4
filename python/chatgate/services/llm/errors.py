"""Normalized chat errors.

Every failure a caller can see is an LLMError carrying an LLMErrorClass, which is
surfaced on the wire as error_code. Two sources produce them:

- backends, which map vendor HTTP failures through classify_provider_error
- context fitting, which raises the user-correctable ContextExceedLimitError and
  MessageTooLargeError

ChannelNotFoundError is a lookup miss inside channel catalogs; the resolver
logs it and falls back, so it never reaches callers.
"""

from enum import Enum

import httpx

from chatgate.logging import get_logger

logger = get_logger(__name__)


class LLMErrorClass(str, Enum):
    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"  # vendor rejected the prompt size
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"
    CONTEXT_EXCEED_LIMIT = "E_CONTEXT_EXCEED_LIMIT"  # history cannot be reduced to fit
    CONTENT_FILTERED = "E_CONTENT_FILTERED"
    MESSAGE_TOO_LARGE = "E_MESSAGE_TOO_LARGE"


class LLMError(Exception):
    """A chat failure with its normalized class and, when known, the backend name."""

    def __init__(self, error_class: LLMErrorClass, message: str, provider: str | None = None):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        super().__init__(message)


class ContextExceedLimitError(LLMError):
    def __init__(self, message: str | None = None):
        super().__init__(
            LLMErrorClass.CONTEXT_EXCEED_LIMIT,
            message
            or "The conversation exceeds the model's maximum context length. "
            "Start a new conversation or shorten your input.",
        )


class MessageTooLargeError(LLMError):
    def __init__(self, message: str | None = None):
        super().__init__(
            LLMErrorClass.MESSAGE_TOO_LARGE,
            message or "The message is too long. Shorten your input and try again.",
        )


class ContentFilteredError(LLMError):
    """A vendor refused the request or response on content grounds. Never retried."""

    def __init__(self, message: str | None = None, provider: str | None = None):
        super().__init__(
            LLMErrorClass.CONTENT_FILTERED,
            message or "The request or response contains sensitive content.",
            provider=provider,
        )


class ChannelNotFoundError(LookupError):
    def __init__(self, channel_id: int):
        self.channel_id = channel_id
        super().__init__(f"channel {channel_id} not found")


# Status codes every vendor family uses the same way
_STATUS_CLASSES: dict[int, LLMErrorClass] = {
    401: LLMErrorClass.INVALID_KEY,
    403: LLMErrorClass.INVALID_KEY,
    404: LLMErrorClass.MODEL_NOT_AVAILABLE,
    429: LLMErrorClass.RATE_LIMIT,
}


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> LLMErrorClass:
    """Map a failed vendor call onto an LLMErrorClass.

    Args:
        provider: Backend family: "openai" (any OpenAI-compatible vendor),
            "anthropic" or "gemini".
        status_code: HTTP status, None when no response was received.
        json_body: Decoded error body, if the vendor sent JSON.
        exception: The transport exception, if one was raised.
    """
    if isinstance(exception, httpx.TimeoutException):
        return LLMErrorClass.TIMEOUT
    if status_code is None:
        return LLMErrorClass.PROVIDER_DOWN

    classify = _BODY_CLASSIFIERS.get(provider)
    if classify is None:
        logger.warning("llm.error.unknown_provider", provider=provider)
        return LLMErrorClass.PROVIDER_DOWN

    error_class = classify(status_code, json_body or {})
    if error_class is not None:
        return error_class
    return _STATUS_CLASSES.get(status_code, LLMErrorClass.PROVIDER_DOWN)


def _error_fields(json_body: dict) -> tuple[str, str, str]:
    error = json_body.get("error")
    if not isinstance(error, dict):
        return "", "", ""
    return (
        str(error.get("code") or ""),
        str(error.get("type") or ""),
        str(error.get("message") or "").lower(),
    )


def _classify_openai_body(status_code: int, json_body: dict) -> LLMErrorClass | None:
    # Azure reports content filtering as a 400 with code "content_filter"
    if status_code != 400:
        return None
    code, _, message = _error_fields(json_body)
    if code == "content_filter":
        return LLMErrorClass.CONTENT_FILTERED
    if code == "context_length_exceeded" or "maximum context length" in message:
        return LLMErrorClass.CONTEXT_TOO_LARGE
    if "model" in message and "not found" in message:
        return LLMErrorClass.MODEL_NOT_AVAILABLE
    return None


def _classify_anthropic_body(status_code: int, json_body: dict) -> LLMErrorClass | None:
    if status_code != 400:
        return None
    _, error_type, message = _error_fields(json_body)
    if error_type == "invalid_request_error" and "too long" in message:
        return LLMErrorClass.CONTEXT_TOO_LARGE
    return None


def _classify_gemini_body(status_code: int, json_body: dict) -> LLMErrorClass | None:
    # Gemini reports most conditions through status strings in the body, not the HTTP code
    body = str(json_body).lower() if json_body else ""
    if "api_key_invalid" in body:
        return LLMErrorClass.INVALID_KEY
    if status_code in (401, 403):
        return None
    if "resource_exhausted" in body:
        return LLMErrorClass.RATE_LIMIT
    if status_code == 400 and "safety" in body:
        return LLMErrorClass.CONTENT_FILTERED
    if "exceeds the maximum" in body:
        return LLMErrorClass.CONTEXT_TOO_LARGE
    if "model not found" in body:
        return LLMErrorClass.MODEL_NOT_AVAILABLE
    return None


_BODY_CLASSIFIERS = {
    "openai": _classify_openai_body,
    "anthropic": _classify_anthropic_body,
    "gemini": _classify_gemini_body,
}
