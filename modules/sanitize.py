"""Cleaning of user-supplied free text before it is sent to the API."""

from __future__ import annotations

from typing import Optional

import bleach


def sanitize_text(text: Optional[str], max_length: Optional[int] = None) -> str:
    """Strip markup and surrounding whitespace, then cap the length."""
    if not text:
        return ""
    text = str(text).strip()
    text = bleach.clean(text, tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text
