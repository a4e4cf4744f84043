"""Prompt construction from a structured conversation.

The codex tool takes a single prompt string, so the conversation is folded:
system messages become base instructions, user messages form the request,
and assistant messages are appended as context.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .options import CodexProviderOptions
from .utils import map_approval_policy, map_sandbox_mode

FALLBACK_PROMPT = "Please respond to the request."


@dataclass(frozen=True)
class ConversationPayload:
    base_instructions: str | None
    user_text: str
    assistant_text: str


def extract_text_from_parts(parts: list[Any]) -> str:
    """Flatten message parts to text.

    Text parts are trimmed, tool results are JSON-serialized, and tool calls
    are summarized by name.
    """
    segments: list[str] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        part_type = part.get("type")
        if part_type == "text" and isinstance(part.get("text"), str):
            trimmed = part["text"].strip()
            if trimmed:
                segments.append(trimmed)
        elif part_type == "tool-result" and isinstance(part.get("output"), (dict, list)):
            serialized = json.dumps(part["output"], separators=(",", ":"))
            if serialized:
                segments.append(serialized)
        elif part_type == "tool-call" and part.get("toolName"):
            segments.append(f"Tool call: {part['toolName']}")
    return "\n".join(segments).strip()


def extract_text_from_message(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        return extract_text_from_parts(content)
    return ""


def build_conversation_payload(messages: list[dict[str, Any]] | None) -> ConversationPayload:
    system_segments: list[str] = []
    user_segments: list[str] = []
    assistant_segments: list[str] = []

    for message in messages or []:
        if not isinstance(message, dict):
            continue
        role = message.get("role")
        text = extract_text_from_message(message)
        if not text:
            continue
        if role == "system":
            system_segments.append(text)
        elif role == "assistant":
            assistant_segments.append(text)
        elif role == "user":
            user_segments.append(text)

    base_instructions = "\n\n".join(system_segments).strip() or None
    return ConversationPayload(
        base_instructions=base_instructions,
        user_text="\n\n".join(user_segments).strip(),
        assistant_text="\n\n".join(assistant_segments).strip(),
    )


def build_prompt(payload: ConversationPayload) -> str:
    prompt = payload.user_text or FALLBACK_PROMPT
    if payload.base_instructions:
        prompt = f"{payload.base_instructions}\n\n{prompt}"
    if payload.assistant_text:
        prompt = f"{prompt}\n\nAssistant context:\n{payload.assistant_text}"
    return prompt


def build_tool_arguments(
    prompt: str,
    options: CodexProviderOptions,
    model_id: str,
    default_cwd: str,
) -> dict[str, Any]:
    """Arguments for the ``codex`` tool call."""
    return {
        "prompt": prompt,
        "model": options.model or model_id,
        "cwd": options.cwd or default_cwd,
        "approval-policy": map_approval_policy(options.approval_policy),
        "sandbox": map_sandbox_mode(options.sandbox_mode),
        "include-plan-tool": False,
        "config": {"model_reasoning_effort": options.reasoning_effort},
    }
