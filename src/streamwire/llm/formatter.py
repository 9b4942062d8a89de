"""Conversation -> provider wire message conversion.

Pure functions only: no I/O and no state.

Modes:
  plain     - leading system message, turns copied as role/content
  r1        - system prompt folded into a leading user turn, same-role runs merged
  simple    - plain, with content flattened to text (non-text parts dropped)
  developer - leading developer message (o1/o3/o4 family)
"""

from __future__ import annotations

import copy
import enum
import re
from typing import Any, Iterable, Mapping

from streamwire.errors import FormatError
from streamwire.types import ConversationTurn, Role, WireMessage

_PLACEHOLDER_USER_CONTENT = "..."
_DEVELOPER_PREFIX = "Formatting re-enabled\n"
_O_FAMILY = re.compile(r"(^|[/\-])o[134]([\-.]|$)")


class FormatMode(enum.Enum):
    PLAIN = "plain"
    R1 = "r1"
    SIMPLE = "simple"
    DEVELOPER = "developer"


def resolve_mode(model_id: str, configured: str | FormatMode | None = None) -> FormatMode:
    """Pick the format mode: explicit configuration wins, else by model id."""
    if configured:
        return FormatMode(configured)
    lower = model_id.lower()
    if "deepseek-reasoner" in lower or "-r1" in lower:
        return FormatMode.R1
    if _O_FAMILY.search(lower):
        return FormatMode.DEVELOPER
    return FormatMode.PLAIN


def flatten_content(content: Any) -> str:
    """Join the text parts of *content*; non-text parts are dropped."""
    if isinstance(content, str):
        return content
    if not content:
        return ""
    texts = [
        part.get("text", "")
        for part in content
        if isinstance(part, Mapping) and part.get("type") == "text"
    ]
    return "\n".join(texts)


def _as_turns(history: Iterable[ConversationTurn | Mapping[str, Any]]) -> list[ConversationTurn]:
    turns: list[ConversationTurn] = []
    for item in history:
        if isinstance(item, ConversationTurn):
            turns.append(item)
        else:
            try:
                turns.append(ConversationTurn.from_dict(item))
            except ValueError as e:
                raise FormatError(f"Invalid conversation turn: {e}") from e
    return turns


def _wire_content(content: Any) -> str | list[dict[str, Any]]:
    if isinstance(content, str):
        return content
    return [dict(part) for part in content]


def format_messages(
    system_prompt: str,
    history: Iterable[ConversationTurn | Mapping[str, Any]],
    mode: FormatMode | str = FormatMode.PLAIN,
    prompt: str | None = None,
) -> list[WireMessage]:
    """Convert *system_prompt* + *history* into the wire shape for *mode*.

    When *history* is empty, *prompt* becomes the single user turn.

    Raises
    ------
    FormatError
        If there is no user turn and no prompt to fall back on.
    """
    mode = FormatMode(mode)
    turns = _as_turns(history)
    if not turns and prompt:
        turns = [ConversationTurn(role=Role.USER, content=prompt)]
    if not any(t.role == Role.USER for t in turns):
        raise FormatError("No user messages or prompt provided")

    if mode == FormatMode.R1:
        return _format_r1(system_prompt, turns)

    if mode == FormatMode.DEVELOPER:
        lead: WireMessage = {"role": "developer", "content": _DEVELOPER_PREFIX + system_prompt}
    else:
        lead = {"role": "system", "content": system_prompt}

    messages: list[WireMessage] = [lead]
    for turn in turns:
        if mode == FormatMode.SIMPLE:
            content: Any = flatten_content(turn.content)
        else:
            content = _wire_content(turn.content)
        messages.append({"role": turn.role.value, "content": content})
    return messages


def _merge_content(left: Any, right: Any) -> Any:
    if isinstance(left, str) and isinstance(right, str):
        return left + "\n" + right
    parts: list[dict[str, Any]] = []
    for side in (left, right):
        if isinstance(side, str):
            parts.append({"type": "text", "text": side})
        else:
            parts.extend(side)
    return parts


def _format_r1(system_prompt: str, turns: list[ConversationTurn]) -> list[WireMessage]:
    """Fold the system prompt into the first user turn and merge same-role runs.

    The target template has no system role and rejects back-to-back turns
    with the same role.
    """
    sequence: list[WireMessage] = []
    if system_prompt:
        sequence.append({"role": "user", "content": system_prompt})
    for turn in turns:
        role = "assistant" if turn.role == Role.ASSISTANT else "user"
        sequence.append({"role": role, "content": _wire_content(turn.content)})

    merged: list[WireMessage] = []
    for msg in sequence:
        if merged and merged[-1]["role"] == msg["role"]:
            merged[-1]["content"] = _merge_content(merged[-1]["content"], msg["content"])
        else:
            merged.append(msg)

    if merged[0]["role"] != "user":
        merged.insert(0, {"role": "user", "content": _PLACEHOLDER_USER_CONTENT})
    return merged


def apply_prompt_cache(messages: list[WireMessage]) -> list[WireMessage]:
    """Mark the system message and the last two user messages as cacheable.

    Returns a copy; string contents are promoted to a single text part.
    """
    marked = copy.deepcopy(messages)
    targets = [m for m in marked if m["role"] == "system"][:1]
    targets += [m for m in marked if m["role"] == "user"][-2:]

    for msg in targets:
        if isinstance(msg["content"], str):
            msg["content"] = [{"type": "text", "text": msg["content"]}]
        text_parts = [p for p in msg["content"] if p.get("type") == "text"]
        if text_parts:
            last = text_parts[-1]
        else:
            last = {"type": "text", "text": _PLACEHOLDER_USER_CONTENT}
            msg["content"].append(last)
        last["cache_control"] = {"type": "ephemeral"}
    return marked
