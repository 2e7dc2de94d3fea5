"""
Model context assembly.

Order: system instructions, recalled memories, the last N turns, the new
user input, then the tool rounds of the current turn.
"""

from collections.abc import Sequence

from ..models import (
    AgentSession,
    ChatMessage,
    RequestedToolCall,
    ScoredMemory,
    ToolRound,
)

DEFAULT_INSTRUCTIONS = (
    "You are a careful assistant with access to tools. Use a tool only when "
    "it is needed, and answer plainly once you have what you need."
)


class ContextBuilder:
    """Builds the provider message list for one generation step."""

    def __init__(self, instructions: str | None = None, history_turns: int = 10) -> None:
        self._instructions = instructions or DEFAULT_INSTRUCTIONS
        self._history_turns = history_turns

    def build(
        self,
        session: AgentSession,
        user_input: str,
        memories: Sequence[ScoredMemory] = (),
        rounds: Sequence[ToolRound] = (),
    ) -> tuple[ChatMessage, ...]:
        """
        Build the message list.

        Args:
            session: Session whose history is replayed.
            user_input: New user message.
            memories: Recalled memories.
            rounds: Tool rounds already completed in this turn.

        Returns:
            Messages in provider order.
        """
        messages = [ChatMessage(role="system", content=self._instructions)]

        if memories:
            lines = "\n".join(f"- {m.record.text}" for m in memories)
            messages.append(
                ChatMessage(role="system", content=f"Relevant memories:\n{lines}")
            )

        history = session.history[-self._history_turns :] if self._history_turns else ()
        for turn in history:
            messages.append(ChatMessage(role="user", content=turn.input))
            for past_round in turn.rounds:
                messages.extend(self.round_messages(past_round))
            messages.append(ChatMessage(role="assistant", content=turn.reply))

        messages.append(ChatMessage(role="user", content=user_input))
        for current in rounds:
            messages.extend(self.round_messages(current))
        return tuple(messages)

    @staticmethod
    def round_messages(tool_round: ToolRound) -> list[ChatMessage]:
        """Expand a tool round into the assistant call message and tool results."""
        calls = tuple(
            RequestedToolCall(
                call_id=inv.call_id or inv.invocation_id,
                name=inv.tool_name,
                arguments=inv.parameters,
            )
            for inv in tool_round.invocations
        )
        messages = [
            ChatMessage(
                role="assistant", content=tool_round.assistant_content, tool_calls=calls
            )
        ]
        for call, result in zip(calls, tool_round.results):
            messages.append(
                ChatMessage(role="tool", content=result.render(), tool_call_id=call.call_id)
            )
        return messages
