"""OpenAI chat-completions provider."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import openai
from openai import OpenAI

from ...cancellation import CancelToken
from ..errors import cancelled_error, map_exception
from ..types import Credentials, EmptyResponse, ImagePayload, ProviderIdentity, ProviderRequest
from .base import TEMPERATURE, join_text_parts

MAX_TOKENS = 4000


class OpenAIProvider:
    identity = ProviderIdentity.OPENAI

    def create_client(self, credentials: Credentials, timeout_seconds: float = 60, max_retries: int = 2) -> OpenAI:
        return OpenAI(
            api_key=credentials.api_key,
            base_url=credentials.resolved_base_url,
            timeout=timeout_seconds,
            max_retries=max_retries,
        )

    def build(
        self,
        instruction: str,
        images: Sequence[ImagePayload],
        model: str,
        system: Optional[str] = None,
    ) -> ProviderRequest:
        content: list[Dict[str, Any]] = [{"type": "text", "text": instruction}]
        content.extend({"type": "image_url", "image_url": {"url": image.data_url}} for image in images)
        messages: list[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": content})
        body = {
            "model": model,
            "messages": messages,
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
        }
        return ProviderRequest(provider=self.identity, model=model, body=body, image_count=len(images))

    def send(self, client: OpenAI, request: ProviderRequest, token: Optional[CancelToken] = None) -> Dict[str, Any]:
        if token is not None:
            token.raise_if_cancelled()
        try:
            response = client.chat.completions.create(**request.body)
        except openai.OpenAIError as exc:
            if token is not None and token.cancelled:
                raise cancelled_error(exc) from exc
            raise map_exception(self.identity, exc) from exc
        if token is not None:
            token.raise_if_cancelled()
        if hasattr(response, "model_dump"):
            return response.model_dump()
        return dict(response)

    def extract(self, raw: Dict[str, Any]) -> str:
        choices = raw.get("choices") or []
        if not choices:
            raise EmptyResponse("OpenAI response has no choices")
        message = (choices[0] or {}).get("message") or {}
        content = message.get("content")
        if isinstance(content, list):
            text = join_text_parts(content)
        else:
            text = content or ""
        if not text.strip():
            raise EmptyResponse(
                f"OpenAI response missing text (finish_reason={choices[0].get('finish_reason')})"
            )
        return text.strip()

    def usage(self, raw: Dict[str, Any]) -> tuple[int, int]:
        usage = raw.get("usage") or {}
        return int(usage.get("prompt_tokens", 0) or 0), int(usage.get("completion_tokens", 0) or 0)
