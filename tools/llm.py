"""
Backend for the ``generate`` step kind, backed by Bedrock through LangChain.
"""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Protocol

DWE_BEDROCK_MODEL_ID = "us.anthropic.claude-sonnet-4-20250514-v1:0"
CONTEXT_SEPARATOR = "\n\n---\n\n"


class LLMProtocol(Protocol):
    def invoke(self, prompt: Any, **kwargs: Any) -> Any:  # pragma: no cover - protocol only
        ...


def build_chat_bedrock_converse(
    *,
    model_id: Optional[str] = None,
    region_name: Optional[str] = None,
    temperature: float = 0.0,
) -> Any:
    """
    Build a ChatBedrockConverse client, defaulting to the DWE model.
    """

    from langchain_aws import ChatBedrockConverse

    resolved_region = region_name or os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
    kwargs: Dict[str, Any] = {
        "model": model_id or DWE_BEDROCK_MODEL_ID,
        "temperature": temperature,
    }
    if resolved_region:
        kwargs["region_name"] = resolved_region
    return ChatBedrockConverse(**kwargs)


def _context_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        parts: List[str] = []
        for item in value:
            if isinstance(item, dict):
                parts.append(str(item.get("text") or item.get("content") or item))
            else:
                parts.append(str(item))
        return CONTEXT_SEPARATOR.join(parts)
    return str(value)


def build_prompt(inputs: Dict[str, Any]) -> str:
    prompt = inputs.get("prompt")
    if not prompt or not isinstance(prompt, str):
        raise ValueError('generate: "prompt" input is required')

    sections: List[str] = []
    if inputs.get("systemPrompt"):
        sections.append(str(inputs["systemPrompt"]).strip())
    context_text = _context_text(inputs.get("context"))
    if context_text:
        sections.append(f"Context:\n{context_text}")
    sections.append(prompt)
    return "\n\n".join(sections)


def _response_text(response: Any) -> str:
    text = getattr(response, "content", None)
    if text is None:
        text = str(response)
    if isinstance(text, list):
        text = " ".join(str(item.get("text", item)) if isinstance(item, dict) else str(item) for item in text)
    return str(text)


def execute_generate(
    inputs: Dict[str, Any],
    defaults: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    *,
    llm: Optional[LLMProtocol] = None,
) -> Dict[str, Any]:
    prompt = build_prompt(inputs)
    model_id = inputs.get("model") or (defaults or {}).get("llmModel") or DWE_BEDROCK_MODEL_ID
    client = llm or build_chat_bedrock_converse(
        model_id=model_id,
        temperature=float(inputs.get("temperature", 0.0)),
    )
    text = _response_text(client.invoke(prompt))
    return {"text": text, "model": model_id, "charCount": len(text)}
