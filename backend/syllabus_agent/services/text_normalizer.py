from __future__ import annotations

import re

from ..core.config import get_settings

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(raw: str, max_chars: int | None = None) -> str:
    """
    Trim, collapse runs of whitespace to single spaces and cap the length so
    downstream prompts stay bounded.
    """
    if not isinstance(raw, str):
        raise TypeError(f"expected extracted text as str, got {type(raw).__name__}")

    if max_chars is None:
        max_chars = get_settings().MAX_INPUT_CHARS

    return _WHITESPACE_RE.sub(" ", raw.strip())[:max_chars]
