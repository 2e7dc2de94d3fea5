"""
OpenAI-compatible chat completions provider.

Works with: OpenAI, Azure OpenAI, TGI, vLLM, Ollama. Requests are
non-streaming so tool calls arrive complete.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from ..exceptions import TransientProviderError
from ..models import (
    ChatMessage,
    ProviderRequest,
    ProviderResponse,
    RequestedToolCall,
)
from .base import HttpProvider

logger = logging.getLogger(__name__)


def parse_arguments(raw: Any) -> dict[str, Any]:
    """
    Decode tool-call arguments sent by the model.

    Undecodable arguments are passed through under ``_raw`` so parameter
    validation rejects them and the model sees why.
    """
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {"_raw": str(raw)}
    return decoded if isinstance(decoded, dict) else {"_raw": decoded}


class OpenAICompatibleProvider(HttpProvider):
    """Provider for any OpenAI-compatible ``/v1/chat/completions`` endpoint."""

    def _url(self) -> str:
        if self.endpoint.endswith("/chat/completions"):
            return self.endpoint
        if self.endpoint.endswith("/v1"):
            return f"{self.endpoint}/chat/completions"
        return f"{self.endpoint}/v1/chat/completions"

    def build_payload(self, request: ProviderRequest) -> dict[str, Any]:
        """
        Convert a ProviderRequest into a chat completions payload.

        Args:
            request: Normalized request.

        Returns:
            JSON payload.
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [self._message(m) for m in request.messages],
            "max_tokens": request.params.max_tokens,
            "temperature": request.params.temperature,
            "stream": False,
        }
        if request.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": dict(t.parameters),
                    },
                }
                for t in request.tools
            ]
        return payload

    @staticmethod
    def _message(message: ChatMessage) -> dict[str, Any]:
        if message.role == "tool":
            return {
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content,
            }
        if message.role == "assistant" and message.tool_calls:
            return {
                "role": "assistant",
                "content": message.content or None,
                "tool_calls": [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(dict(call.arguments)),
                        },
                    }
                    for call in message.tool_calls
                ],
            }
        return {"role": message.role, "content": message.content}

    def parse_response(self, data: Mapping[str, Any]) -> ProviderResponse:
        """
        Convert a chat completions response into a ProviderResponse.

        Raises:
            TransientProviderError: If the response has no choices.
        """
        choices = data.get("choices") or []
        if not choices:
            raise TransientProviderError(self.name, "response contained no choices")
        message = choices[0].get("message") or {}
        content = message.get("content") or ""
        usage = data.get("usage")
        usage_dict = (
            {
                "prompt_tokens": int(usage.get("prompt_tokens", 0)),
                "completion_tokens": int(usage.get("completion_tokens", 0)),
                "total_tokens": int(usage.get("total_tokens", 0)),
            }
            if isinstance(usage, dict)
            else None
        )

        raw_calls = message.get("tool_calls") or []
        if raw_calls:
            calls = [
                RequestedToolCall(
                    call_id=str(call.get("id") or f"call_{index}"),
                    name=str((call.get("function") or {}).get("name", "")),
                    arguments=parse_arguments(
                        (call.get("function") or {}).get("arguments")
                    ),
                )
                for index, call in enumerate(raw_calls)
            ]
            return ProviderResponse.calls(
                calls, content=content, provider=self.name, usage=usage_dict
            )
        return ProviderResponse.final(content, provider=self.name, usage=usage_dict)

    async def send(self, request: ProviderRequest) -> ProviderResponse:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        logger.info("🤖 Requesting completion from %s (%s)", self.name, self.model)
        data = await self._post_json(self._url(), self.build_payload(request), headers)
        return self.parse_response(data)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "OpenAICompatibleProvider":
        return cls(
            name=config.get("name", "openai-compatible"),
            endpoint=config.get("endpoint", "https://api.openai.com"),
            model=config.get("model", ""),
            api_key=config.get("api_key") or config.get("apiKey"),
            timeout=float(config.get("timeout", 120.0)),
            transport=config.get("transport"),
        )
