"""Shared LLM data structures and the provider error taxonomy."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from ..utils import mask_secret

IMAGE_MEDIA_TYPE = "image/png"


class ProviderIdentity(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"

    @property
    def default_model(self) -> str:
        return DEFAULT_MODELS[self]

    @property
    def default_base_url(self) -> str:
        return DEFAULT_BASE_URLS[self]

    @property
    def label(self) -> str:
        return LABELS[self]

    def validate_key(self, api_key: str | None) -> bool:
        key = (api_key or "").strip()
        if not key:
            return False
        if self is ProviderIdentity.GEMINI:
            return len(key) >= 10
        return bool(KEY_PATTERNS[self].match(key))

    @classmethod
    def parse(cls, value: Any, default: "ProviderIdentity | None" = None) -> "ProviderIdentity":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            if default is None:
                raise
            return default

    @classmethod
    def detect(cls, api_key: str) -> "ProviderIdentity":
        """Guesses the vendor from the key prefix."""
        key = api_key.strip()
        if key.startswith("sk-ant-"):
            return cls.ANTHROPIC
        if key.startswith("sk-"):
            return cls.OPENAI
        return cls.GEMINI


DEFAULT_MODELS: Dict[ProviderIdentity, str] = {
    ProviderIdentity.OPENAI: "gpt-4o",
    ProviderIdentity.GEMINI: "gemini-2.5-flash",
    ProviderIdentity.ANTHROPIC: "claude-sonnet-4-5",
}

DEFAULT_BASE_URLS: Dict[ProviderIdentity, str] = {
    ProviderIdentity.OPENAI: "https://api.openai.com/v1",
    ProviderIdentity.GEMINI: "https://generativelanguage.googleapis.com",
    ProviderIdentity.ANTHROPIC: "https://api.anthropic.com",
}

KEY_PATTERNS: Dict[ProviderIdentity, re.Pattern[str]] = {
    ProviderIdentity.OPENAI: re.compile(r"^sk-(?!ant-)[A-Za-z0-9_-]{32,}$"),
    ProviderIdentity.ANTHROPIC: re.compile(r"^sk-ant-[A-Za-z0-9_-]{32,}$"),
}

LABELS: Dict[ProviderIdentity, str] = {
    ProviderIdentity.OPENAI: "OpenAI",
    ProviderIdentity.GEMINI: "Gemini",
    ProviderIdentity.ANTHROPIC: "Claude",
}


@dataclass(frozen=True)
class Credentials:
    provider: ProviderIdentity
    api_key: str
    model: str = ""
    base_url: str = ""

    @property
    def resolved_model(self) -> str:
        return self.model.strip() or self.provider.default_model

    @property
    def resolved_base_url(self) -> str:
        return (self.base_url.strip() or self.provider.default_base_url).rstrip("/")

    @property
    def is_valid(self) -> bool:
        return self.provider.validate_key(self.api_key)

    def __repr__(self) -> str:
        return (
            f"Credentials(provider={self.provider.value!r}, api_key={mask_secret(self.api_key)!r}, "
            f"model={self.resolved_model!r}, base_url={self.resolved_base_url!r})"
        )


@dataclass(frozen=True)
class ImagePayload:
    path: str
    data: str
    media_type: str = IMAGE_MEDIA_TYPE

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"


@dataclass
class ProviderRequest:
    provider: ProviderIdentity
    model: str
    body: Dict[str, Any]
    image_count: int = 0


@dataclass
class LLMResult:
    text: str
    provider: str
    model: str
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)


class ProviderError(RuntimeError):
    """Provider failed to return a valid generation."""

    default_message = "The request failed. Please try again."

    def __init__(self, message: str | None = None, user_message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.user_message = user_message or self.default_message


class NotConfigured(ProviderError):
    default_message = "API key not configured or invalid. Please check your settings."


class InvalidCredentials(NotConfigured):
    default_message = "Invalid API key. Please check your settings."


class EmptyResponse(ProviderError):
    default_message = "The model returned an empty response. Please try again."


class RateLimited(ProviderError):
    default_message = "API rate limit exceeded. Please wait a few minutes before trying again."


class QuotaExceeded(RateLimited):
    default_message = "API quota exhausted or insufficient credits. Please try again later."


class PayloadTooLarge(ProviderError):
    default_message = (
        "Your screenshots contain too much information for this provider. "
        "Switch to another provider in settings which can handle larger inputs."
    )


class Canceled(ProviderError):
    default_message = "Processing was canceled by the user."


class MalformedUpstream(ProviderError):
    default_message = (
        "Failed to parse problem information. Please try again or use clearer screenshots."
    )


class NoContext(ProviderError):
    default_message = "No problem context available. Solve the problem before debugging."
