"""Google Gemini REST provider."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

from ...cancellation import CancelToken
from ..types import Credentials, EmptyResponse, ImagePayload, ProviderIdentity, ProviderRequest
from .base import TEMPERATURE, RestClient

logger = logging.getLogger(__name__)

TOP_P = 0.9
MAX_OUTPUT_TOKENS = 8192
TRUNCATED_FINISH_REASONS = {"MAX_TOKENS"}


class GeminiProvider:
    identity = ProviderIdentity.GEMINI

    def create_client(self, credentials: Credentials, timeout_seconds: float = 60, max_retries: int = 2) -> RestClient:
        return RestClient(credentials, timeout_seconds=timeout_seconds, max_retries=max_retries)

    def build(
        self,
        instruction: str,
        images: Sequence[ImagePayload],
        model: str,
        system: Optional[str] = None,
    ) -> ProviderRequest:
        # Images first, instruction last.
        parts: list[Dict[str, Any]] = [
            {"inlineData": {"mimeType": image.media_type, "data": image.data}} for image in images
        ]
        text = f"{system}\n\n{instruction}" if system else instruction
        parts.append({"text": text})
        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": TEMPERATURE,
                "topP": TOP_P,
                "maxOutputTokens": MAX_OUTPUT_TOKENS,
            },
        }
        return ProviderRequest(provider=self.identity, model=model, body=body, image_count=len(images))

    @staticmethod
    def endpoint(client: RestClient, model: str) -> str:
        base = client.credentials.resolved_base_url
        return f"{base}/v1beta/models/{model}:generateContent?key={client.credentials.api_key}"

    def send(self, client: RestClient, request: ProviderRequest, token: Optional[CancelToken] = None) -> Dict[str, Any]:
        return client.post_json(self.endpoint(client, request.model), request.body, token=token)

    def extract(self, raw: Dict[str, Any]) -> str:
        candidates = raw.get("candidates") or []
        if not candidates:
            block = (raw.get("promptFeedback") or {}).get("blockReason") or "no-candidates"
            raise EmptyResponse(f"Empty response from Gemini API ({block})")

        first = candidates[0] or {}
        finish_reason = first.get("finishReason")
        truncated = finish_reason in TRUNCATED_FINISH_REASONS
        if truncated:
            logger.warning("Gemini response truncated due to %s limit", finish_reason)

        parts = (first.get("content") or {}).get("parts") or []
        if not parts and not truncated:
            raise EmptyResponse(f"Gemini response: content.parts is empty or missing ({finish_reason})")

        texts = [
            part["text"].strip()
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        ]
        full_text = "\n".join(text for text in texts if text).strip()
        if not full_text and not truncated:
            raise EmptyResponse(f"Gemini response missing text (finishReason={finish_reason})")
        return full_text

    def usage(self, raw: Dict[str, Any]) -> tuple[int, int]:
        usage = raw.get("usageMetadata") or {}
        return int(usage.get("promptTokenCount", 0) or 0), int(usage.get("candidatesTokenCount", 0) or 0)
