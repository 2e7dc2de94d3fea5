"""Anthropic Messages API provider."""

import logging
from collections.abc import Mapping
from typing import Any

from ..models import ChatMessage, ProviderRequest, ProviderResponse, RequestedToolCall
from .base import HttpProvider

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(HttpProvider):
    """Provider for the Anthropic ``/v1/messages`` endpoint."""

    def _url(self) -> str:
        if self.endpoint.endswith("/messages"):
            return self.endpoint
        return f"{self.endpoint}/v1/messages"

    def build_payload(self, request: ProviderRequest) -> dict[str, Any]:
        """
        Convert a ProviderRequest into a Messages API payload.

        System messages are joined into ``system``; consecutive tool
        results are merged into one user message of ``tool_result`` blocks.
        """
        system_parts: list[str] = []
        messages: list[dict[str, Any]] = []

        for m in request.messages:
            if m.role == "system":
                system_parts.append(m.content)
            elif m.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": m.tool_call_id,
                    "content": m.content,
                }
                if messages and messages[-1]["role"] == "user" and isinstance(
                    messages[-1]["content"], list
                ):
                    messages[-1]["content"].append(block)
                else:
                    messages.append({"role": "user", "content": [block]})
            elif m.role == "assistant" and m.tool_calls:
                messages.append({"role": "assistant", "content": self._tool_use_blocks(m)})
            else:
                messages.append({"role": m.role, "content": m.content})

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": request.params.max_tokens,
            "temperature": request.params.temperature,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if request.tools:
            payload["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": dict(t.parameters),
                }
                for t in request.tools
            ]
        return payload

    @staticmethod
    def _tool_use_blocks(message: ChatMessage) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        for call in message.tool_calls:
            blocks.append(
                {
                    "type": "tool_use",
                    "id": call.call_id,
                    "name": call.name,
                    "input": dict(call.arguments),
                }
            )
        return blocks

    def parse_response(self, data: Mapping[str, Any]) -> ProviderResponse:
        """Convert a Messages API response into a ProviderResponse."""
        text_parts: list[str] = []
        calls: list[RequestedToolCall] = []
        for block in data.get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                arguments = block.get("input")
                calls.append(
                    RequestedToolCall(
                        call_id=str(block.get("id", "")),
                        name=str(block.get("name", "")),
                        arguments=arguments if isinstance(arguments, dict) else {},
                    )
                )

        usage = data.get("usage")
        usage_dict = None
        if isinstance(usage, dict):
            input_tokens = int(usage.get("input_tokens", 0))
            output_tokens = int(usage.get("output_tokens", 0))
            usage_dict = {
                "prompt_tokens": input_tokens,
                "completion_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
            }

        content = "".join(text_parts)
        if calls:
            return ProviderResponse.calls(
                calls, content=content, provider=self.name, usage=usage_dict
            )
        return ProviderResponse.final(content, provider=self.name, usage=usage_dict)

    async def send(self, request: ProviderRequest) -> ProviderResponse:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        if self._api_key:
            headers["x-api-key"] = self._api_key

        logger.info(f"🤖 Requesting completion from Anthropic ({self.model})")
        data = await self._post_json(self._url(), self.build_payload(request), headers)
        return self.parse_response(data)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AnthropicProvider":
        return cls(
            name=config.get("name", "anthropic"),
            endpoint=config.get("endpoint", "https://api.anthropic.com"),
            model=config.get("model", ""),
            api_key=config.get("api_key") or config.get("apiKey"),
            timeout=float(config.get("timeout", 120.0)),
            transport=config.get("transport"),
        )
