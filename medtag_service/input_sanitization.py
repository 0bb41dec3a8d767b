"""
Input Sanitization Module for the MedTag service

Cleans free-text patient attributes before they are placed into model
prompts.
"""

import re
from typing import Optional


MAX_PROMPT_FIELD_LENGTH = 500
MAX_LIST_ITEMS = 50


def sanitize_text(text: Optional[str], max_length: Optional[int] = None) -> str:
    """Sanitize text input.

    Args:
        text: Input text to sanitize
        max_length: Maximum allowed length (truncates if exceeded)

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    text = _strip_html_tags(text.strip())
    text = _remove_control_chars(text)
    # Collapse newlines so a field cannot open a new prompt section
    text = re.sub(r"\s*\n\s*", " ", text)

    if max_length and len(text) > max_length:
        text = text[:max_length]

    return text.strip()


def sanitize_prompt_field(text: Optional[str]) -> str:
    """Sanitize a single patient attribute destined for a prompt."""
    return sanitize_text(text, max_length=MAX_PROMPT_FIELD_LENGTH)


def sanitize_prompt_list(items: list[str]) -> list[str]:
    """Sanitize a list attribute, dropping entries that end up empty."""
    cleaned = [sanitize_prompt_field(item) for item in items[:MAX_LIST_ITEMS]]
    return [item for item in cleaned if item]


def _strip_html_tags(text: str) -> str:
    """Remove HTML tags from text."""
    text = re.sub(r'<script[^>]*>.*?</script>', '', text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r'<style[^>]*>.*?</style>', '', text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r'<[^>]+>', '', text)
    return text


def _remove_control_chars(text: str) -> str:
    """Remove potentially dangerous control characters."""
    return re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
