"""Utility helpers."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List

BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s+")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_dumps(data: Dict[str, Any] | list[Any] | None) -> str:
    return json.dumps(data or {}, ensure_ascii=False, sort_keys=True)


def json_loads(text: str | None) -> Dict[str, Any]:
    if not text:
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return {}
    if isinstance(payload, dict):
        return payload
    return {}


def find_json_payload(raw: str | None) -> Any:
    """Parses JSON that a model may have wrapped in fences or prose.

    Tries the whole sanitized text first, then every span from the first
    opening brace (or bracket) to each closing one, longest first.
    Returns None when nothing parses.
    """
    if not raw:
        return None
    sanitized = re.sub(r"```(?:json)?", "", raw).strip()

    candidates: List[str] = []
    if sanitized.startswith(("{", "[")):
        candidates.append(sanitized)
    for opener, closer in (("{", "}"), ("[", "]")):
        start = sanitized.find(opener)
        if start == -1:
            continue
        for end in range(len(sanitized) - 1, start, -1):
            if sanitized[end] == closer:
                candidates.append(sanitized[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def to_bullet_list(block: str | None) -> List[str]:
    """Bullet or numbered lines with markers removed, else every non-empty line."""
    if not block:
        return []
    lines = [line.strip() for line in block.splitlines() if line.strip()]
    bullets = [BULLET_RE.sub("", line).strip() for line in lines if BULLET_RE.match(line)]
    return bullets if bullets else lines


def has_value(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != "" and value.strip().lower() != "n/a"


def mask_secret(secret: str | None) -> str:
    if not secret:
        return "<empty>"
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}...{secret[-4:]}"
