"""Maps vendor and transport failures onto the provider error taxonomy."""

from __future__ import annotations

import logging
import re

import openai
import requests

from .types import (
    Canceled,
    InvalidCredentials,
    PayloadTooLarge,
    ProviderError,
    ProviderIdentity,
    QuotaExceeded,
    RateLimited,
)

logger = logging.getLogger(__name__)

QUOTA_MARKERS = ("quota", "insufficient", "resource_exhausted", "billing", "credit")
SIZE_MARKERS = ("too long", "too large", "maximum context", "context length", "token")

_KEY_PARAM_RE = re.compile(r"([?&](?:key|api_key)=)[^&\s]+")


def redact_secrets(text: str) -> str:
    """Masks API keys carried as URL query parameters."""
    return _KEY_PARAM_RE.sub(r"\1***", text)


def _status_and_detail(exc: BaseException) -> tuple[int | None, str]:
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        response = exc.response
        detail = ""
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict):
                detail = " ".join(
                    str(error.get(key) or "") for key in ("status", "type", "code", "message")
                ).strip()
            elif error:
                detail = str(error)
        return response.status_code, redact_secrets(detail or (response.text or "")[:500])
    if isinstance(exc, openai.APIStatusError):
        code = getattr(exc, "code", None) or ""
        return exc.status_code, redact_secrets(f"{code} {exc.message}".strip())
    return getattr(exc, "status_code", None) or getattr(exc, "status", None), redact_secrets(str(exc))


def map_exception(provider: ProviderIdentity, exc: BaseException) -> ProviderError:
    """Converts any failure during a provider call into a ProviderError subclass."""
    if isinstance(exc, ProviderError):
        return exc

    label = provider.label
    text = redact_secrets(str(exc))
    if isinstance(exc, (openai.APITimeoutError, requests.Timeout)):
        return ProviderError(
            f"{label} request timed out: {text}",
            f"{label} did not respond in time. Please try again.",
        )
    if isinstance(exc, (openai.APIConnectionError, requests.ConnectionError)):
        return ProviderError(
            f"{label} connection failed: {text}",
            f"Could not reach the {label} API. Check your network or base URL and try again.",
        )

    status, detail = _status_and_detail(exc)
    lowered = detail.lower()
    logger.debug("Mapping %s failure status=%s detail=%s", provider.value, status, detail)

    if status in (401, 403):
        return InvalidCredentials(
            f"{label} rejected the credentials ({status}): {detail}",
            f"Invalid {label} API key. Please check your settings.",
        )
    if status == 429:
        if any(marker in lowered for marker in QUOTA_MARKERS):
            return QuotaExceeded(
                f"{label} quota exceeded: {detail}",
                f"{label} API quota exhausted or insufficient credits. Please try again later.",
            )
        return RateLimited(
            f"{label} rate limited: {detail}",
            f"{label} API rate limit exceeded. Please wait a few minutes before trying again.",
        )
    if status == 413 or (
        status == 400 and any(marker in lowered for marker in SIZE_MARKERS)
    ):
        others = " or ".join(p.label for p in ProviderIdentity if p is not provider)
        return PayloadTooLarge(
            f"{label} rejected payload size: {detail}",
            f"Your screenshots contain too much information for {label} to process. "
            f"Switch to {others} in settings which can handle larger inputs.",
        )
    if status is not None and status >= 500:
        return ProviderError(
            f"{label} server error ({status}): {detail}",
            f"{label} server error. Please try again later.",
        )
    if status is not None:
        return ProviderError(
            f"{label} request failed ({status}): {detail}",
            f"Failed to process with the {label} API. Please check your API key or try again later.",
        )
    return ProviderError(
        f"{label} call failed: {text}",
        f"Failed to process with the {label} API. Please try again.",
    )


def cancelled_error(exc: BaseException | None = None) -> Canceled:
    return Canceled(f"request aborted: {redact_secrets(str(exc))}" if exc else None, Canceled.default_message)
