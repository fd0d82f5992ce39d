"""Human-readable labels for notification titles and bodies."""

from __future__ import annotations

import re

_SEPARATORS = re.compile(r"[-_ ]")

DEFAULT_MODE = "agent"
DEFAULT_MODEL_ID = "assistant"


def format_mode(raw: str | None) -> str:
    """``"deep_research"`` -> ``"Deep Research"``; empty -> ``"Agent"``."""
    tokens = _tokens(raw or DEFAULT_MODE)
    return " ".join(_capitalize(token) for token in tokens)


def format_model_id(raw: str | None) -> str:
    """``"claude-3-5-sonnet"`` -> ``"Claude 3.5 Sonnet"``; empty -> ``"Assistant"``.

    Version numbers arrive hyphen-split (``3-5``), so two consecutive
    all-digit tokens are rejoined with a period.
    """
    tokens = _tokens(raw or DEFAULT_MODEL_ID)
    merged: list[str] = []
    i = 0
    while i < len(tokens):
        current = tokens[i]
        if _is_digits(current) and i + 1 < len(tokens) and _is_digits(tokens[i + 1]):
            merged.append(f"{current}.{tokens[i + 1]}")
            i += 2
            continue
        merged.append(current)
        i += 1
    return " ".join(_capitalize(token) for token in merged)


def _tokens(raw: str) -> list[str]:
    return [token for token in _SEPARATORS.split(raw) if token]


def _is_digits(token: str) -> bool:
    return token.isascii() and token.isdigit()


def _capitalize(token: str) -> str:
    # Only the first character; "gpt-4o" keeps its lowercase "o".
    return token[:1].upper() + token[1:]
