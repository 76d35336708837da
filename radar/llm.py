"""Unified async LLM client (Anthropic / OpenAI) for JSON calls and tool use."""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from radar.agent import Message, ModelTurn, TextBlock, ToolCall, ToolResult, ToolSpec, Usage

log = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"

_JSON_FENCE = re.compile(r"```(?:json)?\s*([\[{].*[\]}])\s*```", re.DOTALL)


class LLMCallError(Exception):
    """LLM call failed or returned unparseable output."""
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


def llm_configured(provider: str | None = None) -> bool:
    """True when credentials for the configured provider are present."""
    provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
    if provider == "anthropic":
        return bool(os.environ.get("ANTHROPIC_API_KEY", "").strip())
    if provider == "openai_compatible":
        return bool(os.environ.get("OPENAI_BASE_URL", "").strip())
    return bool(os.environ.get("OPENAI_API_KEY", "").strip())


def extract_json(text: str) -> Any:
    """Parse JSON from model text, tolerating a fenced code block."""
    text = (text or "").strip()
    m = _JSON_FENCE.search(text)
    if m:
        text = m.group(1)
    return json.loads(text)


class LLMClient:
    """Unified async LLM client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self.model = self.model or DEFAULT_ANTHROPIC_MODEL
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY")
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or DEFAULT_OPENAI_MODEL
            kwargs: dict[str, Any] = {}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    # -- single-shot JSON ---------------------------------------------------

    async def call(self, system: str, user: str, max_tokens: int = 2048, usage: Usage | None = None) -> Any:
        """Send system+user message to the LLM, return parsed JSON.

        Token counts are added to *usage* when given, even if the reply is not valid JSON.
        """
        try:
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )
                text = "".join(
                    b.text for b in response.content if getattr(b, "type", "") == "text"
                ).strip()
                turn = Usage(response.usage.input_tokens, response.usage.output_tokens)
            else:
                response = await self._client.chat.completions.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    response_format={"type": "json_object"},
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                )
                text = response.choices[0].message.content or "{}"
                turn = Usage(
                    getattr(response.usage, "prompt_tokens", 0) or 0,
                    getattr(response.usage, "completion_tokens", 0) or 0,
                )
        except Exception as exc:
            raise LLMCallError(f"LLM API call failed: {exc}", retryable=True) from exc
        if usage is not None:
            usage.add(turn)

        try:
            return extract_json(text)
        except json.JSONDecodeError as exc:
            raise LLMCallError(
                f"LLM returned invalid JSON: {text[:200]}", retryable=False,
            ) from exc

    # -- tool use -----------------------------------------------------------

    async def create_message(
        self, *, system: str, messages: list[Message], tools: list[ToolSpec], max_tokens: int = 4096,
    ) -> ModelTurn:
        """One tool-use turn over the typed transcript."""
        try:
            if self.provider == "anthropic":
                return await self._anthropic_turn(system, messages, tools, max_tokens)
            return await self._openai_turn(system, messages, tools, max_tokens)
        except Exception as exc:
            raise LLMCallError(f"LLM API call failed: {exc}", retryable=True) from exc

    async def _anthropic_turn(
        self, system: str, messages: list[Message], tools: list[ToolSpec], max_tokens: int,
    ) -> ModelTurn:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [_to_anthropic(m) for m in messages],
        }
        if tools:
            kwargs["tools"] = [t.definition() for t in tools]
        response = await self._client.messages.create(**kwargs)
        content: list[TextBlock | ToolCall] = []
        for block in response.content:
            if block.type == "text":
                content.append(TextBlock(block.text))
            elif block.type == "tool_use":
                content.append(ToolCall(id=block.id, name=block.name, input=dict(block.input or {})))
        usage = Usage(response.usage.input_tokens, response.usage.output_tokens)
        return ModelTurn(content=content, usage=usage, stop_reason=response.stop_reason or "")

    async def _openai_turn(
        self, system: str, messages: list[Message], tools: list[ToolSpec], max_tokens: int,
    ) -> ModelTurn:
        wire: list[dict[str, Any]] = [{"role": "system", "content": system}]
        for m in messages:
            wire.extend(_to_openai(m))
        kwargs: dict[str, Any] = {"model": self.model, "max_tokens": max_tokens, "messages": wire}
        if tools:
            kwargs["tools"] = [
                {"type": "function", "function": {
                    "name": t.name, "description": t.description, "parameters": t.input_schema,
                }}
                for t in tools
            ]
        response = await self._client.chat.completions.create(**kwargs)
        choice = response.choices[0]
        content: list[TextBlock | ToolCall] = []
        if choice.message.content:
            content.append(TextBlock(choice.message.content))
        for tc in choice.message.tool_calls or []:
            try:
                args = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                log.warning("Unparseable tool arguments for %s", tc.function.name)
                args = {}
            content.append(ToolCall(id=tc.id, name=tc.function.name, input=args))
        usage = Usage(
            getattr(response.usage, "prompt_tokens", 0) or 0,
            getattr(response.usage, "completion_tokens", 0) or 0,
        )
        return ModelTurn(content=content, usage=usage, stop_reason=choice.finish_reason or "")


# ---------------------------------------------------------------------------
# Wire conversion
# ---------------------------------------------------------------------------


def _to_anthropic(message: Message) -> dict[str, Any]:
    blocks: list[dict[str, Any]] = []
    for b in message.content:
        if isinstance(b, TextBlock):
            blocks.append({"type": "text", "text": b.text})
        elif isinstance(b, ToolCall):
            blocks.append({"type": "tool_use", "id": b.id, "name": b.name, "input": b.input})
        elif isinstance(b, ToolResult):
            blocks.append({
                "type": "tool_result", "tool_use_id": b.tool_call_id,
                "content": b.serialized(), "is_error": b.is_error,
            })
    return {"role": message.role, "content": blocks}


def _to_openai(message: Message) -> list[dict[str, Any]]:
    if message.role == "assistant":
        text = "\n".join(b.text for b in message.content if isinstance(b, TextBlock))
        calls = [
            {"id": b.id, "type": "function",
             "function": {"name": b.name, "arguments": json.dumps(b.input)}}
            for b in message.content if isinstance(b, ToolCall)
        ]
        out: dict[str, Any] = {"role": "assistant", "content": text or None}
        if calls:
            out["tool_calls"] = calls
        return [out]

    wire: list[dict[str, Any]] = []
    for b in message.content:
        if isinstance(b, ToolResult):
            wire.append({"role": "tool", "tool_call_id": b.tool_call_id, "content": b.serialized()})
    texts = [b.text for b in message.content if isinstance(b, TextBlock)]
    if texts:
        wire.append({"role": "user", "content": "\n\n".join(texts)})
    return wire
