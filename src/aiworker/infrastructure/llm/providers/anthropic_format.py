"""Anthropic messages format, used by Bedrock and the direct Claude API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from aiworker.domain.task import NormalizedResult, ToolCall
from aiworker.infrastructure.llm.documents import flatten_blocks
from aiworker.infrastructure.llm.generation_config import GenerationConfig
from aiworker.infrastructure.llm.providers.base import build_result, parse_tool_arguments


def to_anthropic_messages(
    messages: Sequence[Dict[str, Any]],
    system_prompt: Optional[str] = None,
) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Split system messages into the system parameter; pass content blocks through."""
    system_parts: List[str] = [system_prompt] if system_prompt else []
    out: List[Dict[str, Any]] = []
    for message in messages:
        role = message.get("role") or "user"
        content = message.get("content")
        if role == "system":
            system_parts.append(flatten_blocks(content))
            continue
        if role not in ("user", "assistant"):
            role = "user"
        if isinstance(content, list):
            out.append({"role": role, "content": list(content)})
        else:
            out.append({"role": role, "content": flatten_blocks(content)})
    system = "\n\n".join(p for p in system_parts if p) or None
    return system, out


def sampling_params(options: Dict[str, Any], config: GenerationConfig) -> Dict[str, float]:
    # newer Claude models reject temperature and top_p together
    if "top_p" in options:
        return {"top_p": config.top_p}
    return {"temperature": config.temperature}


def to_anthropic_tools(tools: Optional[Sequence[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    if not tools:
        return None
    converted: List[Dict[str, Any]] = []
    for tool in tools:
        if tool.get("type") == "function" and "function" in tool:
            function = tool["function"]
            converted.append(
                {
                    "name": function.get("name") or "",
                    "description": function.get("description") or "",
                    "input_schema": function.get("parameters") or {"type": "object", "properties": {}},
                }
            )
        else:
            converted.append(tool)
    return converted


def to_anthropic_tool_choice(choice: Any) -> Optional[Dict[str, Any]]:
    if choice is None:
        return None
    if isinstance(choice, dict):
        if choice.get("type") == "function":
            return {"type": "tool", "name": (choice.get("function") or {}).get("name")}
        return choice
    if choice == "required":
        return {"type": "any"}
    if choice in ("auto", "any", "none"):
        return {"type": choice}
    return None


def parse_anthropic_message(data: Dict[str, Any]) -> NormalizedResult:
    blocks = [b for b in (data.get("content") or []) if isinstance(b, dict)]
    text = "".join(b.get("text") or "" for b in blocks if b.get("type") == "text")
    calls = [
        ToolCall(id=b.get("id") or "", name=b.get("name") or "", input=parse_tool_arguments(b.get("input")))
        for b in blocks
        if b.get("type") == "tool_use"
    ]
    metadata: Dict[str, Any] = {}
    if data.get("model"):
        metadata["model"] = data["model"]
    if data.get("usage"):
        metadata["usage"] = data["usage"]
    return build_result(
        text=text.strip() or None,
        finish_reason=data.get("stop_reason"),
        tool_calls=calls,
        blocks=blocks,
        metadata=metadata,
    )
