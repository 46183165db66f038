"""Single-owner registry of the live credentialed provider client."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from ..cancellation import CancelToken
from ..config import Settings
from .adapters import ADAPTERS
from .errors import map_exception
from .providers.base import ProviderAdapter, strip_wrapper_fence
from .types import Credentials, ImagePayload, LLMResult, NotConfigured, ProviderError, ProviderIdentity

logger = logging.getLogger(__name__)

CallLogger = Callable[..., None]


class ProviderClientRegistry:
    def __init__(
        self,
        adapters: Mapping[ProviderIdentity, ProviderAdapter] | None = None,
        call_logger: Optional[CallLogger] = None,
    ) -> None:
        self.adapters: Dict[ProviderIdentity, ProviderAdapter] = dict(adapters or ADAPTERS)
        self.call_logger = call_logger
        self._lock = threading.Lock()
        self._active: Optional[ProviderIdentity] = None
        self._credentials: Optional[Credentials] = None
        self._client: Any = None

    @property
    def active_provider(self) -> Optional[ProviderIdentity]:
        return self._active

    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    def set_active_provider(
        self,
        identity: ProviderIdentity,
        credentials: Optional[Credentials],
        timeout_seconds: float = 60,
        max_retries: int = 2,
    ) -> None:
        """Rebuilds the client for identity and drops whatever was live before."""
        client = None
        if credentials is None or not credentials.api_key.strip():
            logger.warning("No API key available, %s client not initialized", identity.label)
        elif credentials.provider is not identity:
            logger.warning("Credentials for %s cannot be used with %s", credentials.provider.value, identity.value)
        elif not credentials.is_valid:
            logger.warning("API key for %s is malformed, client not initialized", identity.label)
        else:
            try:
                client = self.adapters[identity].create_client(credentials, timeout_seconds, max_retries)
            except Exception:
                logger.exception("Failed to initialize %s client", identity.label)
                client = None

        with self._lock:
            previous = self._client
            self._active = identity
            self._credentials = credentials if client is not None else None
            self._client = client

        if previous is not None and previous is not client:
            close = getattr(previous, "close", None)
            if callable(close):
                try:
                    close()
                except Exception:
                    logger.debug("Closing previous client failed", exc_info=True)
        if client is not None:
            logger.info("%s client initialized (model=%s)", identity.label, credentials.resolved_model)

    def apply_settings(self, settings: Settings) -> None:
        """Config-change handler."""
        self.set_active_provider(
            settings.provider,
            settings.credentials(),
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
        )

    def get_client(self, identity: ProviderIdentity) -> Any:
        with self._lock:
            if self._active is not identity or self._client is None:
                raise NotConfigured(
                    f"{identity.value} client not configured",
                    f"{identity.label} API key not configured or invalid. Please check your settings.",
                )
            return self._client

    def ensure_client(self, settings: Settings) -> Any:
        """Returns the active client, re-initialising from settings once if needed."""
        try:
            return self.get_client(settings.provider)
        except NotConfigured:
            logger.info("Reinitializing %s client", settings.provider.label)
            self.apply_settings(settings)
            return self.get_client(settings.provider)

    def generate(
        self,
        stage: str,
        instruction: str,
        images: Sequence[ImagePayload] = (),
        system: Optional[str] = None,
        token: Optional[CancelToken] = None,
    ) -> LLMResult:
        with self._lock:
            identity, credentials, client = self._active, self._credentials, self._client
        if identity is None or client is None or credentials is None:
            raise NotConfigured()

        adapter = self.adapters[identity]
        model = credentials.resolved_model
        request = adapter.build(instruction, list(images), model, system)
        logger.info("Sending %s request to %s (%s, %d image(s))", stage, identity.label, model, request.image_count)

        start = time.perf_counter()
        try:
            raw = adapter.send(client, request, token)
            text = strip_wrapper_fence(adapter.extract(raw))
        except Exception as exc:
            error = map_exception(identity, exc)
            self._log_call(stage, identity, model, request.image_count, start, error=error)
            if error is exc:
                raise
            raise error from exc

        tokens_in, tokens_out = adapter.usage(raw)
        result = LLMResult(
            text=text,
            provider=identity.value,
            model=model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            latency_ms=int((time.perf_counter() - start) * 1000),
            raw={"id": raw.get("id") or raw.get("responseId")},
        )
        self._log_call(stage, identity, model, request.image_count, start, result=result)
        return result

    def _log_call(
        self,
        stage: str,
        identity: ProviderIdentity,
        model: str,
        image_count: int,
        start: float,
        result: Optional[LLMResult] = None,
        error: Optional[ProviderError] = None,
    ) -> None:
        if self.call_logger is None:
            return
        try:
            self.call_logger(
                stage=stage,
                provider=identity.value,
                model=model,
                image_count=image_count,
                tokens_in=result.tokens_in if result else 0,
                tokens_out=result.tokens_out if result else 0,
                latency_ms=result.latency_ms if result else int((time.perf_counter() - start) * 1000),
                success=error is None,
                error=type(error).__name__ if error else None,
            )
        except Exception:
            logger.warning("Failed to record %s call", stage, exc_info=True)


def check_credentials(identity: ProviderIdentity, api_key: str) -> tuple[bool, Optional[str]]:
    if identity.validate_key(api_key):
        return True, None
    return False, f"Invalid {identity.label} API key format."
