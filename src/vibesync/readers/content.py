"""Flatten structured message content into plain text.

Message content in the logs is either a string or a list of typed parts.
Image parts carry base64 payloads that are never kept: they are counted and
replaced with a short ``[N image attachment(s)]`` placeholder.
"""

from __future__ import annotations

import json
from typing import Any


def _is_image(item: Any) -> bool:
    return isinstance(item, dict) and item.get("type") == "image"


def count_images(content: Any) -> int:
    """Count image parts in raw message content."""
    if isinstance(content, list):
        return sum(1 for item in content if _is_image(item))
    return 1 if _is_image(content) else 0


def contains_images(content: Any) -> bool:
    """Check whether raw message content carries any image parts."""
    return count_images(content) > 0


def image_placeholder(count: int) -> str:
    """Placeholder text for ``count`` dropped images."""
    noun = "attachment" if count == 1 else "attachments"
    return f"[{count} image {noun}]"


def flatten_content(content: Any) -> str:
    """Convert raw message content into a single string.

    Args:
        content: A string, a list of content parts, or a single part dict.

    Returns:
        The text of the content with image parts replaced by a placeholder.
    """
    if content is None:
        return ""

    if isinstance(content, str):
        return content

    if isinstance(content, list):
        text_parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                text_parts.append(item)
            elif isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
                text_parts.append(str(item["text"]))

        text = " ".join(text_parts).strip()
        if contains_images(content):
            placeholder = image_placeholder(count_images(content))
            text = f"{text} {placeholder}" if text else placeholder
        return text

    if isinstance(content, dict):
        if contains_images(content):
            return image_placeholder(count_images(content))
        if content.get("type") == "text" and content.get("text"):
            return str(content["text"])
        return json.dumps(content)

    return str(content)
