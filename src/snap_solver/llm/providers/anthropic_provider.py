"""Anthropic Messages API provider."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from ...cancellation import CancelToken
from ..types import Credentials, EmptyResponse, ImagePayload, ProviderIdentity, ProviderRequest
from .base import TEMPERATURE, RestClient, join_text_parts

ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 4000


class AnthropicProvider:
    identity = ProviderIdentity.ANTHROPIC

    def create_client(self, credentials: Credentials, timeout_seconds: float = 60, max_retries: int = 2) -> RestClient:
        return RestClient(credentials, timeout_seconds=timeout_seconds, max_retries=max_retries)

    def build(
        self,
        instruction: str,
        images: Sequence[ImagePayload],
        model: str,
        system: Optional[str] = None,
    ) -> ProviderRequest:
        content: list[Dict[str, Any]] = []
        if system:
            content.append({"type": "text", "text": system})
        content.append({"type": "text", "text": instruction})
        content.extend(
            {
                "type": "image",
                "source": {"type": "base64", "media_type": image.media_type, "data": image.data},
            }
            for image in images
        )
        body = {
            "model": model,
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
            "messages": [{"role": "user", "content": content}],
        }
        return ProviderRequest(provider=self.identity, model=model, body=body, image_count=len(images))

    def send(self, client: RestClient, request: ProviderRequest, token: Optional[CancelToken] = None) -> Dict[str, Any]:
        url = f"{client.credentials.resolved_base_url}/v1/messages"
        headers = {
            "x-api-key": client.credentials.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        return client.post_json(url, request.body, headers=headers, token=token)

    def extract(self, raw: Dict[str, Any]) -> str:
        content = raw.get("content")
        text = join_text_parts(content) if isinstance(content, list) else ""
        if not text.strip():
            raise EmptyResponse(f"Anthropic response has no text blocks (stop_reason={raw.get('stop_reason')})")
        return text.strip()

    def usage(self, raw: Dict[str, Any]) -> tuple[int, int]:
        usage = raw.get("usage") or {}
        return int(usage.get("input_tokens", 0) or 0), int(usage.get("output_tokens", 0) or 0)
