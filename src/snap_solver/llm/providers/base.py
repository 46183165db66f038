"""LLM provider interface."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import requests
from requests.adapters import HTTPAdapter

from ...cancellation import CancelToken
from ..errors import cancelled_error, map_exception
from ..types import Credentials, ImagePayload, ProviderIdentity, ProviderRequest

logger = logging.getLogger(__name__)

TEMPERATURE = 0.2

WRAPPER_TAGS = {"markdown", "md", "text", "txt", "json"}
_WRAPPER_RE = re.compile(r"^```([\w+#.-]*)[ \t]*\n(.*?)\n?```$", re.DOTALL)


class ProviderAdapter(Protocol):
    identity: ProviderIdentity

    def create_client(self, credentials: Credentials, timeout_seconds: float, max_retries: int) -> Any:
        ...

    def build(
        self,
        instruction: str,
        images: Sequence[ImagePayload],
        model: str,
        system: Optional[str] = None,
    ) -> ProviderRequest:
        ...

    def send(self, client: Any, request: ProviderRequest, token: Optional[CancelToken] = None) -> Dict[str, Any]:
        ...

    def extract(self, raw: Dict[str, Any]) -> str:
        ...

    def usage(self, raw: Dict[str, Any]) -> tuple[int, int]:
        ...


class RestClient:
    """Credentials plus a requests session that cancellation can tear down."""

    def __init__(
        self,
        credentials: Credentials,
        timeout_seconds: float = 60,
        max_retries: int = 2,
        session_factory: Callable[[], Any] = requests.Session,
    ) -> None:
        self.credentials = credentials
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self._session = self._open_session()

    def _open_session(self) -> Any:
        session = self._session_factory()
        if isinstance(session, requests.Session):
            adapter = HTTPAdapter(max_retries=self.max_retries)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        return session

    @property
    def session(self) -> Any:
        with self._lock:
            return self._session

    def abort(self) -> None:
        """Closes the current session so in-flight calls fail, then starts a fresh one."""
        with self._lock:
            old, self._session = self._session, self._open_session()
        old.close()

    def close(self) -> None:
        with self._lock:
            self._session.close()

    def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        token: Optional[CancelToken] = None,
    ) -> Dict[str, Any]:
        provider = self.credentials.provider
        if token is not None:
            token.raise_if_cancelled()
        unregister = token.on_cancel(self.abort) if token is not None else (lambda: None)
        try:
            res = self.session.post(url, json=payload, headers=headers, timeout=self.timeout_seconds)
            res.raise_for_status()
            data = res.json()
        except requests.RequestException as exc:
            if token is not None and token.cancelled:
                raise cancelled_error(exc) from exc
            raise map_exception(provider, exc) from exc
        except ValueError as exc:
            raise map_exception(provider, exc) from exc
        finally:
            unregister()
        if token is not None:
            token.raise_if_cancelled()
        return data if isinstance(data, dict) else {}


def strip_wrapper_fence(text: str) -> str:
    """Removes a fence that wraps the whole reply without being a code answer.

    Only fences tagged as markdown, text or json are wrappers. Untagged and
    language-tagged fences are answers and stay in place.
    """
    cleaned = (text or "").strip()
    match = _WRAPPER_RE.match(cleaned)
    if not match:
        return cleaned
    tag, body = match.group(1).lower(), match.group(2)
    if tag in WRAPPER_TAGS:
        return body.strip()
    return cleaned


def join_text_parts(parts: List[Any], separator: str = "") -> str:
    chunks = []
    for part in parts or []:
        if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
            chunks.append(part["text"])
    return separator.join(chunks)
