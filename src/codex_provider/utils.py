"""Helpers for decoding Codex payloads and mapping provider options."""

from __future__ import annotations

import base64
import binascii
import re
from typing import Any

_WHITESPACE_RE = re.compile(r"\s+")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")

DEFAULT_REASONING_EFFORT = "minimal"
DEFAULT_APPROVAL_POLICY = "on-request"
DEFAULT_SANDBOX_MODE = "workspace-write"


def extract_text_from_result(result: Any) -> str:
    """Pull the trailing text out of a ``tools/call`` result.

    Looks for the first ``{"type": "text"}`` block in ``content``, then falls
    back to ``toolResult.text``. Returns an empty string when neither exists.
    """
    if not isinstance(result, dict):
        return ""

    content = result.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                if isinstance(text, str):
                    return text

    tool_result = result.get("toolResult")
    if isinstance(tool_result, dict):
        text = tool_result.get("text")
        if isinstance(text, str):
            return text

    return ""


def is_likely_text(value: str) -> bool:
    """True if every character is printable or tab/LF/CR, and none is U+FFFD."""
    for char in value:
        code = ord(char)
        if code == 0xFFFD:
            return False
        if code < 0x20 and code not in (0x09, 0x0A, 0x0D):
            return False
    return True


def decode_exec_chunk(raw: str) -> str | None:
    """Decode a command output chunk.

    Chunks may arrive base64 encoded. A strict decode is attempted first and
    its result kept only if it looks like text; otherwise the raw string is
    used if it looks like text. Anything else is dropped (``None``).
    """
    if not raw:
        return None

    compressed = _WHITESPACE_RE.sub("", raw)
    if compressed and len(compressed) % 4 == 0 and _BASE64_RE.match(compressed):
        try:
            decoded = base64.b64decode(compressed, validate=True).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            decoded = ""
        if decoded and is_likely_text(decoded):
            return decoded

    return raw if is_likely_text(raw) else None


def shared_prefix_length(a: str, b: str) -> int:
    """Length of the common leading run of ``a`` and ``b``."""
    limit = min(len(a), len(b))
    index = 0
    while index < limit and a[index] == b[index]:
        index += 1
    return index


def normalize_reasoning(value: str) -> str:
    """Normalize a reasoning chunk for duplicate detection."""
    return _WHITESPACE_RE.sub(" ", value.strip().replace("*", ""))


def map_approval_policy(policy: str | None) -> str:
    """Values are validated by CodexProviderOptions; only the default is filled in."""
    return policy or DEFAULT_APPROVAL_POLICY


def map_sandbox_mode(mode: str | None) -> str:
    return mode or DEFAULT_SANDBOX_MODE
