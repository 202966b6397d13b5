"""LLM backends for the understanding and classification collaborators.

Both collaborators make single-shot requests: a system prompt, one user
message, one tool the model is forced to call.  :class:`LLMClient` is the
seam; three implementations sit behind it:

- :class:`OllamaLLMClient`: a local Ollama server.
- :class:`PaidLLMClient`: Anthropic or OpenAI.
- :class:`FallbackLLMClient`: the local server first, the paid API on any
  failure.

:func:`build_llm_client` picks the right one for the configured backends.
Tool schemas are always passed in OpenAI function-calling format and
converted per provider.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from expensechat.config import Settings, settings

logger = logging.getLogger(__name__)

#: Tool schema in OpenAI function-calling format.
ToolSchema = dict[str, Any]


# ── Data models ───────────────────────────────────────────────────────────────


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = ""


class ChatOptions(BaseModel):
    """Sampling options for one request."""

    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=800, gt=0)


class ToolCall(BaseModel):
    """A tool call requested by the model, with decoded arguments."""

    id: str = ""
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, name: str, arguments: Any, call_id: str = "") -> ToolCall:
        """Build a call from provider output.

        *arguments* may be a mapping or a JSON string.  Anything that does
        not decode to an object becomes ``{}``; the tool registry then
        reports the call as malformed.
        """
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                logger.warning("Tool call %s had undecodable arguments: %.200s", name, arguments)
                arguments = {}
        if not isinstance(arguments, dict):
            arguments = dict(arguments) if hasattr(arguments, "keys") else {}
        return cls(id=call_id, name=name, arguments=arguments)


class LLMResponse(BaseModel):
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    input_tokens: int | None = None
    output_tokens: int | None = None
    latency_ms: int | None = None
    provider: str = ""
    model: str = ""


# ── Protocol ──────────────────────────────────────────────────────────────────


@runtime_checkable
class LLMClient(Protocol):
    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
        tool_choice: str | None = None,
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        """Run one chat completion.

        Args:
            messages: System prompt and user message(s).
            tools: Tools the model may call.
            tool_choice: Name of the tool the model must call.
            options: Sampling options (defaults apply when ``None``).
        """
        ...


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


# ── Ollama ────────────────────────────────────────────────────────────────────


class OllamaLLMClient:
    """Client for a local Ollama server.

    Ollama cannot force a tool, so a *tool_choice* narrows the offered
    tools to that one.
    """

    def __init__(self, base_url: str | None = None, model: str | None = None) -> None:
        self._base_url = base_url or settings.ollama_base_url
        self._model = model or settings.ollama_model

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
        tool_choice: str | None = None,
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        import ollama

        options = options or ChatOptions()
        offered = _only_tool(tools, tool_choice) if tool_choice else tools
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _messages_to_ollama(messages),
            "options": {"temperature": options.temperature, "num_predict": options.max_tokens},
        }
        if offered:
            kwargs["tools"] = offered

        start = time.monotonic()
        response = await ollama.AsyncClient(host=self._base_url).chat(**kwargs)
        latency_ms = _elapsed_ms(start)

        message = response.get("message") or {}
        tool_calls = [
            ToolCall.from_raw(
                (tc.get("function") or {}).get("name", ""),
                (tc.get("function") or {}).get("arguments") or {},
                f"call_{i}",
            )
            for i, tc in enumerate(message.get("tool_calls") or [])
        ]
        return LLMResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            input_tokens=response.get("prompt_eval_count"),
            output_tokens=response.get("eval_count"),
            latency_ms=latency_ms,
            provider="ollama",
            model=self._model,
        )


# ── Paid APIs ─────────────────────────────────────────────────────────────────


class PaidLLMClient:
    """Client for Anthropic or OpenAI, chosen by *provider*.

    Defaults come from ``settings.fallback_llm_provider``,
    ``settings.fallback_llm_model`` and the matching API key.
    """

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        anthropic_api_key: str | None = None,
        openai_api_key: str | None = None,
    ) -> None:
        self._provider = provider or settings.fallback_llm_provider
        self._model = model or settings.fallback_llm_model
        self._anthropic_api_key = anthropic_api_key or settings.anthropic_api_key
        self._openai_api_key = openai_api_key or settings.openai_api_key

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
        tool_choice: str | None = None,
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        options = options or ChatOptions()
        if self._provider == "anthropic":
            return await self._chat_anthropic(messages, tools, tool_choice, options)
        if self._provider == "openai":
            return await self._chat_openai(messages, tools, tool_choice, options)
        raise ValueError(f"Unknown LLM provider: {self._provider}")

    async def _chat_anthropic(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None,
        tool_choice: str | None,
        options: ChatOptions,
    ) -> LLMResponse:
        import anthropic

        system, conversation = _split_system(messages)
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [{"role": m.role, "content": m.content} for m in conversation],
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = _tools_to_anthropic(tools)
            if tool_choice:
                kwargs["tool_choice"] = {"type": "tool", "name": tool_choice}

        client = anthropic.AsyncAnthropic(api_key=self._anthropic_api_key)
        start = time.monotonic()
        response = await client.messages.create(**kwargs)
        latency_ms = _elapsed_ms(start)

        text = "".join(block.text for block in response.content if block.type == "text")
        tool_calls = [
            ToolCall.from_raw(block.name, block.input, block.id)
            for block in response.content
            if block.type == "tool_use"
        ]
        return LLMResponse(
            content=text,
            tool_calls=tool_calls,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=latency_ms,
            provider="anthropic",
            model=self._model,
        )

    async def _chat_openai(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None,
        tool_choice: str | None,
        options: ChatOptions,
    ) -> LLMResponse:
        import openai

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            if tool_choice:
                kwargs["tool_choice"] = {"type": "function", "function": {"name": tool_choice}}

        client = openai.AsyncOpenAI(api_key=self._openai_api_key)
        start = time.monotonic()
        response = await client.chat.completions.create(**kwargs)
        latency_ms = _elapsed_ms(start)

        message = response.choices[0].message
        tool_calls = [
            ToolCall.from_raw(tc.function.name, tc.function.arguments, tc.id)
            for tc in message.tool_calls or []
        ]
        usage = response.usage
        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            input_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.completion_tokens if usage else None,
            latency_ms=latency_ms,
            provider="openai",
            model=self._model,
        )


# ── Composite ─────────────────────────────────────────────────────────────────


class FallbackLLMClient:
    """Tries *primary* (local Ollama by default); on any error retries the
    same request on *fallback* (the paid API).  The fallback's error
    propagates when both fail.
    """

    def __init__(self, primary: LLMClient | None = None, fallback: LLMClient | None = None) -> None:
        self._primary = primary or OllamaLLMClient()
        self._fallback = fallback or PaidLLMClient()

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
        tool_choice: str | None = None,
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        try:
            return await self._primary.chat(messages, tools, tool_choice, options)
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            logger.warning("Primary LLM failed (%s); retrying on fallback", reason)

        try:
            response = await self._fallback.chat(messages, tools, tool_choice, options)
        except Exception as exc:
            logger.error("Fallback LLM also failed: %s", exc)
            raise
        response.provider = f"{response.provider} (fallback)"
        logger.info("Fallback LLM answered in %dms (after: %s)", response.latency_ms or 0, reason)
        return response


# ── Format conversion ─────────────────────────────────────────────────────────


def _messages_to_ollama(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    return [{"role": m.role, "content": m.content} for m in messages]


def _split_system(messages: list[ChatMessage]) -> tuple[str, list[ChatMessage]]:
    """Separate system prompts (joined) from the rest, for Anthropic."""
    system = "\n\n".join(m.content for m in messages if m.role == "system")
    return system, [m for m in messages if m.role != "system"]


def _only_tool(tools: list[ToolSchema] | None, name: str) -> list[ToolSchema]:
    return [t for t in tools or [] if t.get("function", {}).get("name") == name]


def _tools_to_anthropic(tools: list[ToolSchema] | None) -> list[dict[str, Any]]:
    """``{"type": "function", "function": {name, description, parameters}}``
    becomes ``{name, description, input_schema}``.
    """
    converted: list[dict[str, Any]] = []
    for tool in tools or []:
        func = tool.get("function", {})
        converted.append(
            {
                "name": func.get("name", ""),
                "description": func.get("description", ""),
                "input_schema": func.get("parameters", {}),
            }
        )
    return converted


# ── Factory ───────────────────────────────────────────────────────────────────


def build_llm_client(config: Settings | None = None) -> LLMClient | None:
    """Build the client for the configured backends.

    Returns:
        A :class:`FallbackLLMClient` when both Ollama and a paid provider are
        configured, the single configured client otherwise, and ``None``
        when AI is disabled or nothing is configured.
    """
    config = config or settings
    if not config.llm_available:
        logger.info("No LLM backend configured; collaborators run rule-based")
        return None

    local = paid = None
    if config.ollama_base_url:
        local = OllamaLLMClient(base_url=config.ollama_base_url, model=config.ollama_model)
    if config.paid_llm_configured:
        paid = PaidLLMClient(
            provider=config.fallback_llm_provider,
            model=config.fallback_llm_model,
            anthropic_api_key=config.anthropic_api_key,
            openai_api_key=config.openai_api_key,
        )
    if local is not None and paid is not None:
        return FallbackLLMClient(primary=local, fallback=paid)
    return local or paid
