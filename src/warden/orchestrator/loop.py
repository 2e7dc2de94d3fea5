"""
Orchestrator turn loop.

One turn per inbound message:
- Recall memories for the input
- Generate through the router, executing requested tools in rounds
- Stop on a final answer, an exhausted budget, or an expired deadline
- Remember the exchange

The session lock is held for the whole turn, so a session never runs
two turns at once. Sessions of different subjects run concurrently.
"""

import asyncio
import logging
import time

from ..config.schema import AgentSettings
from ..exceptions import MemoryStoreError, RouterExhaustedError, SessionClosedError
from ..memory.base import Embedder, MemoryBackend
from ..models import (
    AgentSession,
    GenerationParams,
    InboundMessage,
    LoopState,
    MemoryRecord,
    OutboundMessage,
    ProviderRequest,
    ProviderResponse,
    ResponseKind,
    ResourceUsage,
    ScoredMemory,
    Subject,
    ToolInvocation,
    ToolOutcome,
    ToolResult,
    ToolRound,
    Turn,
    new_id,
)
from ..router.router import ProviderRouter
from ..sandbox.sandbox import ToolSandbox
from .context import ContextBuilder
from .session import SessionManager

logger = logging.getLogger(__name__)

APOLOGY_NOTICE = (
    "Sorry, I could not reach any language model right now. Please try again shortly."
)
BUDGET_NOTICE = "I reached the tool-call limit for this turn and stopped here."
DEADLINE_NOTICE = "I ran out of time for this turn and stopped here."


class Orchestrator:
    """
    Drives sessions through the generate and execute loop.

    Usage:
        orchestrator = Orchestrator(router, sandbox, sessions, AgentSettings())
        reply = await orchestrator.handle_message(inbound)
    """

    def __init__(
        self,
        router: ProviderRouter,
        sandbox: ToolSandbox,
        sessions: SessionManager,
        settings: AgentSettings,
        memory: MemoryBackend | None = None,
        embedder: Embedder | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            router: Provider router used for generation.
            sandbox: Sandbox that executes tool invocations.
            sessions: Session manager.
            settings: Agent loop settings.
            memory: Optional memory backend for recall and remember.
            embedder: Embedder paired with the memory backend.
        """
        self.router = router
        self.sandbox = sandbox
        self.sessions = sessions
        self.settings = settings
        self.memory = memory if embedder is not None else None
        self.embedder = embedder
        self.context = ContextBuilder(settings.instructions, settings.history_turns)

    async def handle_message(self, message: InboundMessage) -> OutboundMessage:
        """
        Run one turn for an inbound message.

        Args:
            message: Inbound user message.

        Returns:
            Reply addressed to the sender.

        Raises:
            SessionClosedError: If the session keeps closing under us.
        """
        subject = message.subject
        # A session reaped between lookup and lock is replaced once
        for _ in range(2):
            session = self.sessions.get_or_create(subject)
            async with session.lock:
                if session.closed:
                    continue
                turn = await self._run_turn(session, message)
                break
        else:
            raise SessionClosedError(session.session_id)

        await self._remember(session, turn)

        return OutboundMessage(
            channel=message.channel,
            user_id=message.user_id,
            content=turn.reply,
            reply_to=message.message_id,
            metadata={"session_id": session.session_id, "turn_id": turn.turn_id},
        )

    async def close_session(self, subject: Subject) -> bool:
        """
        Close a subject's session once its in-flight turn has finished.

        Returns:
            True if a session was closed.
        """
        session = self.sessions.get(subject)
        if session is None:
            return False
        async with session.lock:
            return self.sessions.close(subject)

    async def _run_turn(self, session: AgentSession, message: InboundMessage) -> Turn:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + session.budget.max_turn_seconds
        turn_id = new_id()
        started_at = time.time()

        logger.info(f"🤖 Turn {turn_id} started for {session.subject.key}")
        session.transition(LoopState.GENERATING)
        try:
            reply, rounds, exhausted = await self._generate_loop(
                session, message.content, turn_id, deadline
            )
            session.transition(LoopState.RESPONDING)
        except BaseException:
            session.abort_turn()
            raise

        turn = Turn(
            turn_id=turn_id,
            input=message.content,
            reply=reply,
            rounds=tuple(rounds),
            budget_exhausted=exhausted,
            started_at=started_at,
            completed_at=time.time(),
        )
        session.append_turn(turn)
        session.transition(LoopState.AWAITING_INPUT)
        logger.info(f"✅ Turn {turn_id} finished with {len(rounds)} tool rounds")
        return turn

    async def _generate_loop(
        self,
        session: AgentSession,
        user_input: str,
        turn_id: str,
        deadline: float,
    ) -> tuple[str, list[ToolRound], bool]:
        """
        Alternate generation and tool rounds until the turn ends.

        Returns:
            Reply text, completed rounds, and whether the budget ran out.
        """
        loop = asyncio.get_running_loop()
        memories = await self._recall(user_input)
        tools = tuple(self.sandbox.available_tools(session.subject))
        params = GenerationParams(
            max_tokens=self.settings.max_tokens,
            temperature=self.settings.temperature,
        )
        rounds: list[ToolRound] = []
        remaining = session.budget.max_tool_calls

        while True:
            request = ProviderRequest(
                messages=self.context.build(session, user_input, memories, rounds),
                tools=tools,
                params=params,
            )
            time_left = deadline - loop.time()
            if time_left <= 0:
                return DEADLINE_NOTICE, rounds, False

            try:
                response = await asyncio.wait_for(self.router.send(request), timeout=time_left)
            except RouterExhaustedError as e:
                logger.error(f"❌ All providers failed: {e}")
                return APOLOGY_NOTICE, rounds, False
            except asyncio.TimeoutError:
                logger.warning(f"⏱️ Turn {turn_id} deadline expired during generation")
                return DEADLINE_NOTICE, rounds, False

            if response.kind is ResponseKind.FINAL:
                return response.content, rounds, False

            if remaining <= 0:
                return _with_notice(response, BUDGET_NOTICE), rounds, True

            session.transition(LoopState.EXECUTING_TOOLS)
            calls = response.tool_calls[:remaining]
            if len(calls) < len(response.tool_calls):
                logger.warning(
                    f"⚠️ Dropped {len(response.tool_calls) - len(calls)} tool calls over budget"
                )
            invocations = tuple(
                ToolInvocation(
                    tool_name=call.name,
                    parameters=call.arguments,
                    turn_id=turn_id,
                    call_id=call.call_id,
                )
                for call in calls
            )
            results = await self._execute_batch(invocations, session.subject, deadline)
            rounds.append(ToolRound(response.content, invocations, results))
            remaining -= len(invocations)

            if remaining <= 0:
                logger.info(f"🛑 Tool-call budget exhausted in turn {turn_id}")
                return _with_notice(response, BUDGET_NOTICE), rounds, True
            if loop.time() >= deadline:
                logger.warning(f"⏱️ Turn {turn_id} deadline expired during tools")
                return _with_notice(response, DEADLINE_NOTICE), rounds, False

            session.transition(LoopState.GENERATING)

    async def _execute_batch(
        self,
        invocations: tuple[ToolInvocation, ...],
        subject: Subject,
        deadline: float,
    ) -> tuple[ToolResult, ...]:
        """
        Execute one round of invocations concurrently.

        Results come back in invocation order. Invocations still running at
        the turn deadline are cancelled and reported as timeouts.
        """
        semaphore = asyncio.Semaphore(self.settings.max_parallel_tools)

        async def run_one(invocation: ToolInvocation) -> ToolResult:
            async with semaphore:
                return await self.sandbox.invoke(invocation, subject)

        tasks = [asyncio.create_task(run_one(inv)) for inv in invocations]
        try:
            time_left = max(deadline - asyncio.get_running_loop().time(), 0.0)
            _, pending = await asyncio.wait(tasks, timeout=time_left)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        results: list[ToolResult] = []
        for invocation, task in zip(invocations, tasks):
            if task.cancelled():
                results.append(
                    ToolResult(
                        invocation_id=invocation.invocation_id,
                        tool_name=invocation.tool_name,
                        outcome=ToolOutcome.EXECUTION_TIMEOUT,
                        usage=ResourceUsage(),
                        error="turn deadline exceeded",
                    )
                )
            else:
                results.append(task.result())
        return tuple(results)

    async def _recall(self, query: str) -> list[ScoredMemory]:
        if self.memory is None or self.settings.memory_recall_k <= 0:
            return []

        async def collect() -> list[ScoredMemory]:
            embedding = await self.embedder.embed_one(query)
            return [m async for m in self.memory.recall(embedding, self.settings.memory_recall_k)]

        try:
            memories = await asyncio.wait_for(
                collect(), timeout=self.settings.memory_timeout_seconds
            )
        except (MemoryStoreError, ValueError, asyncio.TimeoutError) as e:
            logger.warning(f"⚠️ Memory recall skipped: {e or 'timed out'}")
            return []

        logger.debug(f"🧠 Recalled {len(memories)} memories")
        return memories

    async def _remember(self, session: AgentSession, turn: Turn) -> None:
        if self.memory is None or not self.settings.remember_turns:
            return

        text = f"User: {turn.input}\nAssistant: {turn.reply}"

        async def store() -> None:
            embedding = await self.embedder.embed_one(text)
            record = MemoryRecord(
                text=text,
                embedding=tuple(embedding),
                metadata={
                    "subject": session.subject.key,
                    "session_id": session.session_id,
                    "turn_id": turn.turn_id,
                    "source": "turn",
                },
            )
            await self.memory.remember(record, allow_eviction=True)

        try:
            await asyncio.wait_for(store(), timeout=self.settings.memory_timeout_seconds)
        except (MemoryStoreError, asyncio.TimeoutError) as e:
            logger.warning(f"⚠️ Failed to remember turn {turn.turn_id}: {e or 'timed out'}")


def _with_notice(response: ProviderResponse, notice: str) -> str:
    if response.content:
        return f"{response.content}\n\n{notice}"
    return notice
