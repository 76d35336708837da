"""Agent loop: a bounded tool-use conversation with a language model.

One engine drives every agentic stage (collector, publisher collector,
analyzer, reporter); the stages differ only in prompt, tool table,
iteration ceiling and the two optional hooks:

- ``precondition(result) -> str | None`` runs when the model stops calling
  tools.  Returning a message injects it as a user turn and keeps looping.
- ``stop_when(execution) -> bool`` ends the loop right after a tool turn in
  which a matching call ran.

Each iteration is one model call.  Tool calls from one model turn run
concurrently, and all of their results are appended before the next call.
Handler failures and unknown tool names become ``{"error": ...}`` tool
results.  A failing model call raises :class:`AgentAbortedError` carrying
the partial result; tool side effects already made stay in place.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Protocol, Union

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


@dataclass
class TextBlock:
    text: str


@dataclass
class ToolCall:
    id: str
    name: str
    input: dict[str, Any]


@dataclass
class ToolResult:
    tool_call_id: str
    content: Any
    is_error: bool = False

    def serialized(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, default=str)


ContentBlock = Union[TextBlock, ToolCall, ToolResult]


@dataclass
class Message:
    role: Literal["user", "assistant"]
    content: list[ContentBlock]

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", content=[TextBlock(text)])


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, other: Usage) -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens

    def as_dict(self) -> dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class ModelTurn:
    """One model response: prose and tool calls in emitted order."""
    content: list[TextBlock | ToolCall]
    usage: Usage = field(default_factory=Usage)
    stop_reason: str = ""

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [b for b in self.content if isinstance(b, ToolCall)]

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock)).strip()


class ModelClient(Protocol):
    async def create_message(
        self, *, system: str, messages: list[Message], tools: list[ToolSpec], max_tokens: int,
    ) -> ModelTurn: ...


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

ToolHandler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler

    def definition(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


@dataclass
class ToolExecution:
    name: str
    input: dict[str, Any]
    result: Any
    is_error: bool = False


def _is_error_result(result: Any) -> bool:
    return isinstance(result, dict) and "error" in result and result.get("success") is not True


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


@dataclass
class AgentResult:
    final_text: str = ""
    iterations: int = 0
    usage: Usage = field(default_factory=Usage)
    tool_log: list[ToolExecution] = field(default_factory=list)
    transcript: list[Message] = field(default_factory=list)
    termination: str = ""  # completed | max_iterations | stopped
    corrections: int = 0

    def calls_to(self, name: str) -> list[ToolExecution]:
        return [t for t in self.tool_log if t.name == name]


class AgentAbortedError(Exception):
    """The model call failed; ``partial`` holds everything done so far."""
    def __init__(self, message: str, partial: AgentResult):
        super().__init__(message)
        self.partial = partial


class AgentLoop:
    def __init__(
        self,
        client: ModelClient,
        *,
        system: str,
        tools: list[ToolSpec],
        max_iterations: int = 10,
        max_tokens: int = 4096,
        precondition: Callable[[AgentResult], str | None] | None = None,
        stop_when: Callable[[ToolExecution], bool] | None = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.client = client
        self.system = system
        self.tools = {t.name: t for t in tools}
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens
        self.precondition = precondition
        self.stop_when = stop_when

    async def _execute(self, call: ToolCall) -> tuple[ToolResult, ToolExecution]:
        spec = self.tools.get(call.name)
        if spec is None:
            result: Any = {"error": f"Unknown tool: {call.name}"}
        else:
            try:
                result = spec.handler(call.input)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:
                log.warning("Tool %s failed: %s", call.name, exc)
                result = {"error": str(exc) or exc.__class__.__name__}
        is_error = _is_error_result(result)
        return (
            ToolResult(tool_call_id=call.id, content=result, is_error=is_error),
            ToolExecution(name=call.name, input=call.input, result=result, is_error=is_error),
        )

    async def run(self, initial_message: str) -> AgentResult:
        result = AgentResult(transcript=[Message.user(initial_message)])
        messages = result.transcript
        tool_list = list(self.tools.values())

        while result.iterations < self.max_iterations:
            result.iterations += 1
            try:
                turn = await self.client.create_message(
                    system=self.system, messages=messages, tools=tool_list, max_tokens=self.max_tokens,
                )
            except Exception as exc:
                result.termination = "aborted"
                raise AgentAbortedError(f"Model call failed: {exc}", result) from exc

            result.usage.add(turn.usage)
            if turn.text:
                result.final_text = turn.text
            calls = turn.tool_calls

            if not calls:
                if turn.content:
                    messages.append(Message(role="assistant", content=list(turn.content)))
                correction = self.precondition(result) if self.precondition else None
                if correction is None:
                    result.termination = "completed"
                    return result
                log.info("Completion precondition unmet, injecting correction")
                result.corrections += 1
                if messages[-1].role == "user":
                    messages[-1].content.append(TextBlock(correction))
                else:
                    messages.append(Message.user(correction))
                continue

            outcomes = await asyncio.gather(*(self._execute(c) for c in calls))
            messages.append(Message(role="assistant", content=list(turn.content)))
            messages.append(Message(role="user", content=[o[0] for o in outcomes]))
            executions = [o[1] for o in outcomes]
            result.tool_log.extend(executions)

            if self.stop_when and any(self.stop_when(e) for e in executions):
                result.termination = "stopped"
                return result

        log.info("Agent loop hit max iterations (%d)", self.max_iterations)
        result.termination = "max_iterations"
        return result
