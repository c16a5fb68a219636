"""Language model interface and an OpenAI-compatible chat completions client."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .config import BASE_LOGGER, MODEL_API_BASE, MODEL_API_KEY, MODEL_NAME, MODEL_TIMEOUT
from .exceptions import ModelAPIError

LOGGER = BASE_LOGGER.getChild("llm")


@dataclass(frozen=True)
class ModelToolCall:
    id: str
    name: str
    # Raw JSON string as sent by the model, or an already-decoded mapping.
    arguments: Any = None

    def arguments_json(self) -> str:
        if isinstance(self.arguments, str):
            return self.arguments
        return json.dumps(self.arguments if self.arguments is not None else {}, ensure_ascii=False)

    def to_message_part(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json()},
        }


@dataclass(frozen=True)
class ModelResponse:
    text: str = ""
    tool_calls: Sequence[ModelToolCall] = field(default_factory=tuple)
    finish_reason: Optional[str] = None

    def assistant_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"role": "assistant", "content": self.text or None}
        if self.tool_calls:
            message["tool_calls"] = [c.to_message_part() for c in self.tool_calls]
        return message


class LanguageModel(Protocol):
    async def complete(
        self,
        system: str,
        messages: Sequence[Dict[str, Any]],
        tools: Sequence[Dict[str, Any]],
    ) -> ModelResponse:
        ...


def parse_chat_completion(data: Any) -> ModelResponse:
    """Map one ``/chat/completions`` response body onto ``ModelResponse``."""

    try:
        choice = data["choices"][0]
        message = choice["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ModelAPIError(f"Malformed chat completion response: {exc!r}") from exc

    calls: List[ModelToolCall] = []
    for raw in message.get("tool_calls") or []:
        fn = raw.get("function") or {}
        name = fn.get("name")
        if not name:
            continue
        calls.append(
            ModelToolCall(
                id=raw.get("id") or f"call_{uuid.uuid4().hex}",
                name=name,
                arguments=fn.get("arguments"),
            )
        )

    return ModelResponse(
        text=message.get("content") or "",
        tool_calls=tuple(calls),
        finish_reason=choice.get("finish_reason"),
    )


class OpenAICompatibleModel:
    """``LanguageModel`` backed by any OpenAI-compatible chat endpoint."""

    def __init__(
        self,
        *,
        api_base: str = MODEL_API_BASE,
        api_key: Optional[str] = MODEL_API_KEY,
        model: str = MODEL_NAME,
        timeout: float = MODEL_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.model = model
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def complete(
        self,
        system: str,
        messages: Sequence[Dict[str, Any]],
        tools: Sequence[Dict[str, Any]],
    ) -> ModelResponse:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system}, *messages],
        }
        if tools:
            payload["tools"] = [{"type": "function", "function": spec} for spec in tools]
            payload["tool_choice"] = "auto"

        url = f"{self.api_base}/chat/completions"
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise ModelAPIError(f"Model request failed: {exc.__class__.__name__}: {exc}") from exc

        duration_ms = int((time.perf_counter() - started) * 1000)
        LOGGER.detailed(
            "[model] POST %s -> %s %dms",
            url,
            resp.status_code,
            duration_ms,
            extra={"status": resp.status_code, "duration_ms": duration_ms},
        )

        if resp.status_code >= 400:
            raise ModelAPIError(
                f"Model endpoint returned {resp.status_code}: {resp.text[:500]}"
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ModelAPIError("Model endpoint returned non-JSON body") from exc
        return parse_chat_completion(data)


__all__ = [
    "LanguageModel",
    "ModelResponse",
    "ModelToolCall",
    "OpenAICompatibleModel",
    "parse_chat_completion",
]
