"""Provider adapter lookup plus the request-building and text-extraction entry points."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from .providers.anthropic_provider import AnthropicProvider
from .providers.base import ProviderAdapter, strip_wrapper_fence
from .providers.gemini_provider import GeminiProvider
from .providers.openai_provider import OpenAIProvider
from .types import EmptyResponse, ImagePayload, ProviderIdentity, ProviderRequest

ADAPTERS: Dict[ProviderIdentity, ProviderAdapter] = {
    ProviderIdentity.OPENAI: OpenAIProvider(),
    ProviderIdentity.GEMINI: GeminiProvider(),
    ProviderIdentity.ANTHROPIC: AnthropicProvider(),
}


def get_adapter(identity: ProviderIdentity | str) -> ProviderAdapter:
    return ADAPTERS[ProviderIdentity.parse(identity)]


def build_request(
    identity: ProviderIdentity | str,
    instruction: str,
    images: Sequence[ImagePayload] = (),
    model: Optional[str] = None,
    system: Optional[str] = None,
) -> ProviderRequest:
    provider = ProviderIdentity.parse(identity)
    return get_adapter(provider).build(instruction, list(images), model or provider.default_model, system)


def extract_text(identity: ProviderIdentity | str, raw: Any) -> str:
    """Reduces a vendor envelope to the reply text, without wrapper fences."""
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        raise EmptyResponse(f"Unrecognised response envelope: {type(raw).__name__}")
    return strip_wrapper_fence(get_adapter(identity).extract(raw))
