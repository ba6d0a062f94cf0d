"""Conversion between normalized messages and the OpenAI chat-completions shape.

Shared by every backend speaking that dialect (Mistral, LiteLLM, IONOS, OpenAI).
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from aiworker.domain.task import NormalizedResult, ToolCall
from aiworker.infrastructure.llm.documents import document_block_to_text, flatten_blocks
from aiworker.infrastructure.llm.providers.base import build_result, parse_tool_arguments


def _image_part(block: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    source = block.get("source") or {}
    if source.get("type") == "url" and source.get("url"):
        return {"type": "image_url", "image_url": {"url": source["url"]}}
    data = source.get("data")
    if not data:
        return None
    media_type = source.get("media_type") or "image/jpeg"
    url = data if str(data).startswith("data:") else f"data:{media_type};base64,{data}"
    return {"type": "image_url", "image_url": {"url": url}}


def _user_content(content: Any, *, images: bool) -> Any:
    if not isinstance(content, list):
        return flatten_blocks(content)

    parts: List[Dict[str, Any]] = []
    for block in content:
        if not isinstance(block, dict):
            parts.append({"type": "text", "text": str(block)})
            continue
        kind = block.get("type")
        if kind == "text":
            parts.append({"type": "text", "text": block.get("text") or ""})
        elif kind == "document":
            parts.append({"type": "text", "text": document_block_to_text(block)})
        elif kind == "image":
            part = _image_part(block) if images else None
            if part is None:
                name = (block.get("source") or {}).get("name") or "Unbekannt"
                part = {"type": "text", "text": f"[Bild: {name}]"}
            parts.append(part)
        else:
            text = flatten_blocks([block])
            if text:
                parts.append({"type": "text", "text": text})

    if all(p["type"] == "text" for p in parts):
        return "\n".join(p["text"] for p in parts if p["text"])
    return parts


def _tool_result_text(block: Dict[str, Any]) -> str:
    content = block.get("content")
    if isinstance(content, (dict, list)) and not _is_block_list(content):
        return json.dumps(content, ensure_ascii=False)
    return flatten_blocks(content)


def _is_block_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, dict) and "type" in v for v in value)


def to_openai_messages(
    messages: Sequence[Dict[str, Any]],
    system_prompt: Optional[str] = None,
    *,
    images: bool = True,
) -> List[Dict[str, Any]]:
    """
    Convert normalized messages.

    - each ``tool_result`` block becomes its own ``role: tool`` message
    - assistant ``tool_use`` blocks become ``tool_calls`` with JSON arguments
    - documents are flattened to extracted text
    """
    out: List[Dict[str, Any]] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})

    for message in messages:
        role = message.get("role") or "user"
        content = message.get("content")

        if role == "system":
            out.append({"role": "system", "content": flatten_blocks(content)})
            continue

        if role == "assistant":
            if isinstance(content, list):
                texts = [b.get("text") or "" for b in content if isinstance(b, dict) and b.get("type") == "text"]
                calls = [
                    {
                        "id": b.get("id") or "",
                        "type": "function",
                        "function": {
                            "name": b.get("name") or "",
                            "arguments": json.dumps(b.get("input") or {}, ensure_ascii=False),
                        },
                    }
                    for b in content
                    if isinstance(b, dict) and b.get("type") == "tool_use"
                ]
                entry: Dict[str, Any] = {"role": "assistant", "content": "\n".join(t for t in texts if t)}
                if calls:
                    entry["tool_calls"] = calls
                out.append(entry)
            else:
                out.append({"role": "assistant", "content": flatten_blocks(content)})
            continue

        if isinstance(content, list):
            results = [b for b in content if isinstance(b, dict) and b.get("type") == "tool_result"]
            for block in results:
                out.append(
                    {
                        "role": "tool",
                        "tool_call_id": block.get("tool_use_id") or "",
                        "content": _tool_result_text(block),
                    }
                )
            rest = [b for b in content if not (isinstance(b, dict) and b.get("type") == "tool_result")]
            if results and not rest:
                continue
            content = rest

        out.append({"role": "user", "content": _user_content(content, images=images)})
    return out


def to_openai_tools(tools: Optional[Sequence[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    """Accept Anthropic-style (name/input_schema) or function-style tool definitions."""
    if not tools:
        return None
    converted: List[Dict[str, Any]] = []
    for tool in tools:
        if tool.get("type") == "function" and "function" in tool:
            converted.append(tool)
            continue
        converted.append(
            {
                "type": "function",
                "function": {
                    "name": tool.get("name") or "",
                    "description": tool.get("description") or "",
                    "parameters": tool.get("input_schema") or tool.get("parameters") or {"type": "object", "properties": {}},
                },
            }
        )
    return converted


def to_openai_tool_choice(choice: Any) -> Any:
    if choice is None:
        return None
    if isinstance(choice, str):
        return "required" if choice == "any" else choice
    if isinstance(choice, dict):
        kind = choice.get("type")
        if kind == "tool" and choice.get("name"):
            return {"type": "function", "function": {"name": choice["name"]}}
        if kind == "any":
            return "required"
        if kind in ("auto", "none"):
            return kind
    return choice


def parse_chat_completion(data: Dict[str, Any]) -> NormalizedResult:
    """Map a chat-completions reply (as a dict) to a NormalizedResult."""
    choices = data.get("choices") or []
    choice = choices[0] if choices else {}
    message = choice.get("message") or {}

    content = message.get("content")
    if isinstance(content, list):
        content = "".join(
            part.get("text") or "" for part in content if isinstance(part, dict) and part.get("type") == "text"
        )

    calls: List[ToolCall] = []
    for index, raw in enumerate(message.get("tool_calls") or []):
        function = raw.get("function") or {}
        calls.append(
            ToolCall(
                id=raw.get("id") or f"call_{index}",
                name=function.get("name") or "",
                input=parse_tool_arguments(function.get("arguments")),
            )
        )

    metadata: Dict[str, Any] = {}
    if data.get("model"):
        metadata["model"] = data["model"]
    if data.get("usage"):
        metadata["usage"] = data["usage"]

    return build_result(
        text=(content or "").strip() or None,
        finish_reason=choice.get("finish_reason"),
        tool_calls=calls,
        metadata=metadata,
    )
