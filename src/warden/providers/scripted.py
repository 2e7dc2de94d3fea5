"""Scripted provider for testing and offline runs."""

import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Union

from ..exceptions import PermanentProviderError, TransientProviderError
from ..models import ProviderRequest, ProviderResponse, RequestedToolCall, new_id
from .base import Provider

logger = logging.getLogger(__name__)

ScriptStep = Union[
    ProviderResponse,
    BaseException,
    Callable[[ProviderRequest], Union[ProviderResponse, Awaitable[ProviderResponse]]],
]


class ScriptedProvider(Provider):
    """
    Provider that replays a queue of scripted steps.

    Each call pops one step: a ProviderResponse is returned, an exception
    is raised, a callable is invoked with the request. Once the queue is
    empty the provider echoes the last user message back as a final reply.
    """

    def __init__(
        self,
        name: str = "scripted",
        steps: list[ScriptStep] | None = None,
        default_response: str | None = None,
    ) -> None:
        """
        Initialize scripted provider.

        Args:
            name: Provider instance name.
            steps: Steps to replay in order.
            default_response: Reply used once steps run out (None = echo).
        """
        self._name = name
        self._steps: deque[ScriptStep] = deque(steps or [])
        self._default_response = default_response
        self._call_history: list[ProviderRequest] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_history(self) -> list[ProviderRequest]:
        """Return history of calls for testing assertions."""
        return self._call_history

    @property
    def remaining_steps(self) -> int:
        return len(self._steps)

    def enqueue(self, *steps: ScriptStep) -> None:
        """Append steps to the script."""
        self._steps.extend(steps)

    async def send(self, request: ProviderRequest) -> ProviderResponse:
        self._call_history.append(request)

        if not self._steps:
            return ProviderResponse.final(self._fallback(request), provider=self._name)

        step = self._steps.popleft()
        if isinstance(step, BaseException):
            logger.debug(f"🎭 {self._name} raising scripted {type(step).__name__}")
            raise step
        if isinstance(step, ProviderResponse):
            return step

        result = step(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _fallback(self, request: ProviderRequest) -> str:
        if self._default_response is not None:
            return self._default_response
        for message in reversed(request.messages):
            if message.role == "user":
                return f"Echo: {message.content}"
        return "Echo:"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ScriptedProvider":
        """
        Build a scripted provider from configuration.

        ``replies`` entries are either plain strings (final replies),
        ``{"toolCalls": [{"name": ..., "arguments": {...}}]}`` or
        ``{"error": "transient" | "permanent", "message": ...}``.
        """
        name = config.get("name", "scripted")
        steps: list[ScriptStep] = []
        for raw in config.get("replies") or []:
            if isinstance(raw, str):
                steps.append(ProviderResponse.final(raw, provider=name))
            elif isinstance(raw, Mapping) and "toolCalls" in raw:
                calls = [
                    RequestedToolCall(
                        call_id=str(call.get("id") or new_id()[:12]),
                        name=str(call["name"]),
                        arguments=call.get("arguments") or {},
                    )
                    for call in raw["toolCalls"]
                ]
                steps.append(
                    ProviderResponse.calls(
                        calls, content=raw.get("content", ""), provider=name
                    )
                )
            elif isinstance(raw, Mapping) and "error" in raw:
                message = raw.get("message", "scripted failure")
                if raw["error"] == "permanent":
                    steps.append(PermanentProviderError(name, message))
                else:
                    steps.append(TransientProviderError(name, message))
            else:
                raise ValueError(f"Unsupported scripted reply: {raw!r}")
        return cls(
            name=name,
            steps=steps,
            default_response=config.get("default_response")
            or config.get("defaultResponse"),
        )
