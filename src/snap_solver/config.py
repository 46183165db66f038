"""Configuration loading and defaults."""

from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from .llm.types import Credentials, ProviderIdentity

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "provider": "",
    "api_key": "",
    "language": "python",
    "providers": {
        "openai": {"model": "", "base_url": ""},
        "gemini": {"model": "", "base_url": ""},
        "anthropic": {"model": "", "base_url": ""},
    },
    "llm": {
        "timeout_seconds": 60,
        "max_retries": 2,
    },
    "history": {
        "enabled": True,
        "path": "data/snap_solver.db",
    },
    "screenshots": {
        "directory": "screenshots",
        "extra_directory": "screenshots/extra",
    },
    "logging": {
        "level": "INFO",
    },
}

DEFAULT_PROVIDER = ProviderIdentity.GEMINI

PROVIDER_KEY_ENV = {
    ProviderIdentity.OPENAI: ("OPENAI_API_KEY",),
    ProviderIdentity.GEMINI: ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    ProviderIdentity.ANTHROPIC: ("ANTHROPIC_API_KEY",),
}

FOREIGN_MODEL_MARKERS = {
    ProviderIdentity.OPENAI: ("gemini", "claude"),
    ProviderIdentity.GEMINI: ("gpt", "claude"),
    ProviderIdentity.ANTHROPIC: ("gpt", "gemini"),
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def sanitize_model(value: Any, provider: ProviderIdentity) -> str:
    """Returns the model name, or the provider default if it names another vendor."""
    model = _clean(value)
    if not model:
        return provider.default_model
    lowered = model.lower()
    if any(marker in lowered for marker in FOREIGN_MODEL_MARKERS[provider]):
        logger.warning("Model %s does not belong to %s, using %s", model, provider.value, provider.default_model)
        return provider.default_model
    return model


@dataclass(frozen=True)
class Settings:
    provider: ProviderIdentity
    api_key: str
    language: str
    models: Dict[ProviderIdentity, str]
    base_urls: Dict[ProviderIdentity, str]
    timeout_seconds: float = 60
    max_retries: int = 2
    history_enabled: bool = True
    history_path: str = "data/snap_solver.db"
    screenshot_dir: str = "screenshots"
    extra_screenshot_dir: str = "screenshots/extra"
    log_level: str = "INFO"
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def credentials(self, provider: Optional[ProviderIdentity] = None) -> Credentials:
        identity = provider or self.provider
        return Credentials(
            provider=identity,
            api_key=self.api_key,
            model=self.models.get(identity, ""),
            base_url=self.base_urls.get(identity, ""),
        )

    def provider_signature(self) -> tuple:
        """Fields whose change requires the live client to be rebuilt."""
        creds = self.credentials()
        return (
            creds.provider,
            creds.api_key,
            creds.resolved_model,
            creds.resolved_base_url,
            self.timeout_seconds,
            self.max_retries,
            self.language,
        )


def _env_api_key(provider: ProviderIdentity) -> str:
    generic = _clean(os.getenv("SNAP_SOLVER_API_KEY"))
    if generic:
        return generic
    for name in PROVIDER_KEY_ENV[provider]:
        value = _clean(os.getenv(name))
        if value:
            return value
    return ""


def _provider_from_env() -> tuple[ProviderIdentity, str]:
    """First provider with a vendor-specific key in the environment."""
    for identity in ProviderIdentity:
        for name in PROVIDER_KEY_ENV[identity]:
            value = _clean(os.getenv(name))
            if value:
                return identity, value
    return DEFAULT_PROVIDER, ""


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    merged = _deep_merge(DEFAULT_SETTINGS, data or {})
    api_key = _clean(merged.get("api_key"))

    provider_value = _clean(os.getenv("SNAP_SOLVER_PROVIDER")) or _clean(merged.get("provider"))
    if provider_value:
        provider = ProviderIdentity.parse(provider_value, default=DEFAULT_PROVIDER)
    else:
        # Detect from the key that will actually be sent.
        api_key = _clean(os.getenv("SNAP_SOLVER_API_KEY")) or api_key
        if api_key:
            provider = ProviderIdentity.detect(api_key)
        else:
            provider, api_key = _provider_from_env()
        if api_key:
            logger.info("Auto-detected %s API key format", provider.label)

    api_key = _env_api_key(provider) or api_key

    per_provider = merged.get("providers") or {}
    models: Dict[ProviderIdentity, str] = {}
    base_urls: Dict[ProviderIdentity, str] = {}
    for identity in ProviderIdentity:
        entry = per_provider.get(identity.value) or {}
        models[identity] = sanitize_model(entry.get("model"), identity)
        base_urls[identity] = _clean(entry.get("base_url")) or identity.default_base_url

    llm_cfg = merged.get("llm") or {}
    history_cfg = merged.get("history") or {}
    shots_cfg = merged.get("screenshots") or {}
    return Settings(
        provider=provider,
        api_key=api_key,
        language=_clean(merged.get("language")) or "python",
        models=models,
        base_urls=base_urls,
        timeout_seconds=float(llm_cfg.get("timeout_seconds", 60)),
        max_retries=int(llm_cfg.get("max_retries", 2)),
        history_enabled=bool(history_cfg.get("enabled", True)),
        history_path=str(history_cfg.get("path") or DEFAULT_SETTINGS["history"]["path"]),
        screenshot_dir=str(shots_cfg.get("directory") or "screenshots"),
        extra_screenshot_dir=str(shots_cfg.get("extra_directory") or "screenshots/extra"),
        log_level=str((merged.get("logging") or {}).get("level", "INFO")).upper(),
        raw=merged,
    )


def load_settings(settings_path: str = "config/settings.yaml") -> Settings:
    """Loads settings.yaml and merges it onto defaults."""
    user_cfg: Dict[str, Any] = {}
    config_path = Path(settings_path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as f:
            user_cfg = yaml.safe_load(f) or {}
    if not isinstance(user_cfg, dict):
        raise ValueError(f"Settings file must contain a mapping: {settings_path}")
    return settings_from_dict(user_cfg)


class ConfigStore:
    """Read-only view of the settings file with change notification."""

    def __init__(self, settings_path: str = "config/settings.yaml") -> None:
        self.settings_path = settings_path
        self._lock = threading.Lock()
        self._listeners: List[Callable[[Settings], None]] = []
        self._current = load_settings(settings_path)

    def load(self) -> Settings:
        with self._lock:
            return self._current

    def subscribe(self, listener: Callable[[Settings], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def reload(self) -> bool:
        """Re-reads the file; notifies listeners when provider setup or language changed."""
        fresh = load_settings(self.settings_path)
        with self._lock:
            changed = fresh.provider_signature() != self._current.provider_signature()
            self._current = fresh
            listeners = list(self._listeners)
        if changed:
            logger.info("Configuration updated, active provider is %s", fresh.provider.value)
            for listener in listeners:
                listener(fresh)
        return changed
