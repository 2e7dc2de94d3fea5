"""
Runtime adapters that execute tool processes under limits.

NativeProcessRuntime runs the process directly on the host in its own
session with POSIX rlimits. It cannot confine filesystem or network
access. ContainerRuntime runs the process through the docker CLI and
can enforce both.
"""

import asyncio
import logging
import math
import os
import resource
import shutil
import signal
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from ..exceptions import (
    ExecutionFaultError,
    ExecutionTimeoutError,
    ResourceLimitExceededError,
)
from ..models import new_id
from .limits import CommandSpec, ExecutionLimits, ExecutionOutput

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 4096


class _OutputCollector:
    """Reads process streams incrementally and trips when the cap is hit."""

    def __init__(self, limit: int, on_exceeded: Callable[[], None]) -> None:
        self._limit = limit
        self._on_exceeded = on_exceeded
        self.stdout = bytearray()
        self.stderr = bytearray()
        self.total = 0
        self.exceeded = False

    async def drain(self, stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                return
            remaining = self._limit - self.total
            if remaining > 0:
                buffer.extend(chunk[:remaining])
            self.total += len(chunk)
            if self.total > self._limit and not self.exceeded:
                self.exceeded = True
                self._on_exceeded()

    def text(self) -> tuple[str, str]:
        return (
            self.stdout.decode("utf-8", errors="replace"),
            self.stderr.decode("utf-8", errors="replace"),
        )


class RuntimeAdapter(ABC):
    """
    Base class for execution runtimes.

    Subclasses declare which constraint kinds they can enforce; the
    sandbox refuses to run a constrained invocation on a runtime that
    cannot enforce its constraints.
    """

    enforces_paths: bool = False
    enforces_network: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Runtime name used in configuration and audit entries."""

    def can_enforce(self, limits: ExecutionLimits) -> bool:
        """
        Check whether this runtime honours the given constraints.

        Args:
            limits: Effective limits for the execution.

        Returns:
            True if every requested constraint can be enforced.
        """
        if limits.restricts_filesystem and not self.enforces_paths:
            return False
        if limits.deny_network and not self.enforces_network:
            return False
        return True

    @abstractmethod
    async def run(self, spec: CommandSpec, limits: ExecutionLimits) -> ExecutionOutput:
        """
        Run a command to completion.

        Args:
            spec: Command to run.
            limits: Limits to enforce.

        Returns:
            Captured output.

        Raises:
            ExecutionTimeoutError: If the wall-clock limit expired.
            ResourceLimitExceededError: If the output or a resource cap was hit.
            ExecutionFaultError: If the process could not be spawned.
        """

    async def close(self) -> None:
        """Release runtime resources. Override if needed."""

    async def _execute(
        self,
        argv: list[str],
        spec: CommandSpec,
        limits: ExecutionLimits,
        preexec_fn: Callable[[], None] | None = None,
        on_abort: Callable[[], Awaitable[None]] | None = None,
    ) -> ExecutionOutput:
        """Spawn ``argv`` and supervise it until exit, timeout or cancellation."""
        env = None
        if spec.env:
            env = {**os.environ, **spec.env}

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if spec.stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
                env=env,
                start_new_session=True,
                preexec_fn=preexec_fn,
            )
        except OSError as e:
            logger.error(f"❌ Failed to spawn {argv[0]}: {e}")
            raise ExecutionFaultError(spec.tool, f"Failed to spawn {argv[0]}: {e}") from e

        collector = _OutputCollector(limits.max_output_bytes, lambda: _kill_group(process))

        async def communicate() -> int:
            if spec.stdin is not None and process.stdin is not None:
                try:
                    process.stdin.write(spec.stdin)
                    await process.stdin.drain()
                except (BrokenPipeError, ConnectionResetError):
                    # Process exited without reading its input.
                    pass
                finally:
                    process.stdin.close()
            await asyncio.gather(
                collector.drain(process.stdout, collector.stdout),
                collector.drain(process.stderr, collector.stderr),
            )
            return await process.wait()

        try:
            exit_code = await asyncio.wait_for(communicate(), timeout=limits.timeout_seconds)
        except asyncio.TimeoutError:
            await self._abort(process, on_abort)
            logger.warning(f"⏱️ {spec.tool or argv[0]} timed out after {limits.timeout_seconds:g}s")
            raise ExecutionTimeoutError(spec.tool, limits.timeout_seconds) from None
        except asyncio.CancelledError:
            await self._abort(process, on_abort)
            raise

        stdout, stderr = collector.text()
        if collector.exceeded:
            await self._abort(process, on_abort)
            logger.warning(
                f"📏 {spec.tool or argv[0]} hit the output cap of {limits.max_output_bytes} bytes"
            )
            raise ResourceLimitExceededError(
                spec.tool,
                f"output cap of {limits.max_output_bytes} bytes",
                partial_output=stdout + stderr,
            )
        if exit_code == -signal.SIGXCPU:
            raise ResourceLimitExceededError(spec.tool, "CPU time limit", partial_output=stdout)

        return ExecutionOutput(
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            output_bytes=collector.total,
            wall_time_seconds=time.monotonic() - start,
        )

    @staticmethod
    async def _abort(
        process: asyncio.subprocess.Process,
        on_abort: Callable[[], Awaitable[None]] | None,
    ) -> None:
        _kill_group(process)
        if on_abort is not None:
            await on_abort()
        await process.wait()


def _kill_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the process group started for ``process``."""
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class NativeProcessRuntime(RuntimeAdapter):
    """
    Runs commands as host processes.

    Each process starts in a new session so the whole group can be killed.
    Address space and CPU time are capped with rlimits.
    """

    def __init__(self, name: str = "native") -> None:
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @staticmethod
    def _rlimits(limits: ExecutionLimits) -> Callable[[], None]:
        cpu_seconds = max(1, math.ceil(limits.timeout_seconds))
        memory = limits.max_memory_bytes

        def apply() -> None:
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))
            if memory:
                resource.setrlimit(resource.RLIMIT_AS, (memory, memory))

        return apply

    async def run(self, spec: CommandSpec, limits: ExecutionLimits) -> ExecutionOutput:
        logger.debug(f"🛠️ native run: {list(spec.argv)}")
        return await self._execute(
            list(spec.argv), spec, limits, preexec_fn=self._rlimits(limits)
        )

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "NativeProcessRuntime":
        return cls(name=config.get("name", "native"))


class ContainerRuntime(RuntimeAdapter):
    """
    Runs commands in throwaway containers through the docker CLI.

    Only the constraint path prefixes are bind-mounted; network is set to
    ``none`` when the decision denies it.
    """

    enforces_paths = True
    enforces_network = True

    def __init__(
        self,
        name: str = "container",
        image: str = "python:3.12-slim",
        docker_binary: str = "docker",
        network: str = "bridge",
        mounts: list[str] | None = None,
    ) -> None:
        """
        Initialize container runtime.

        Args:
            name: Runtime name.
            image: Image to run commands in.
            docker_binary: docker (or compatible) CLI.
            network: Network used when network is not denied.
            mounts: Host paths mounted when no path constraint applies.

        Raises:
            ValueError: If the docker binary cannot be found.
        """
        resolved = shutil.which(docker_binary)
        if resolved is None:
            raise ValueError(f"Container CLI not found: {docker_binary}")
        self._name = name
        self._image = image
        self._docker = resolved
        self._network = network
        self._mounts = list(mounts or [])

    @property
    def name(self) -> str:
        return self._name

    def build_argv(
        self, spec: CommandSpec, limits: ExecutionLimits, container_name: str
    ) -> list[str]:
        """
        Build the docker CLI invocation for a command.

        Args:
            spec: Command to run inside the container.
            limits: Effective limits.
            container_name: Name used to kill the container.

        Returns:
            Full argv for the docker CLI.
        """
        argv = [
            self._docker,
            "run",
            "--rm",
            "-i",
            "--name",
            container_name,
            "--network",
            "none" if limits.deny_network else self._network,
        ]
        if limits.max_memory_bytes:
            argv += ["--memory", str(limits.max_memory_bytes)]

        mounts = list(limits.path_prefixes) if limits.restricts_filesystem else self._mounts
        for path in mounts:
            argv += ["--volume", f"{path}:{path}"]
        if spec.cwd and any(
            spec.cwd == m or spec.cwd.startswith(m.rstrip("/") + "/") for m in mounts
        ):
            argv += ["--workdir", spec.cwd]
        for key, value in spec.env.items():
            argv += ["--env", f"{key}={value}"]

        argv.append(self._image)
        argv.extend(spec.argv)
        return argv

    async def run(self, spec: CommandSpec, limits: ExecutionLimits) -> ExecutionOutput:
        container_name = f"warden-{new_id()[:16]}"
        argv = self.build_argv(spec, limits, container_name)

        async def kill_container() -> None:
            try:
                killer = await asyncio.create_subprocess_exec(
                    self._docker,
                    "kill",
                    container_name,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
                await killer.wait()
            except OSError as e:
                logger.warning(f"⚠️ Failed to kill container {container_name}: {e}")

        logger.debug(f"🛠️ container run ({container_name}): {list(spec.argv)}")
        # The docker client runs on the host; only the container is confined.
        host_spec = CommandSpec(argv=spec.argv, stdin=spec.stdin, tool=spec.tool)
        return await self._execute(argv, host_spec, limits, on_abort=kill_container)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ContainerRuntime":
        return cls(
            name=config.get("name", "container"),
            image=config.get("image", "python:3.12-slim"),
            docker_binary=config.get("binary", "docker"),
            network=config.get("network", "bridge"),
            mounts=config.get("mounts"),
        )
