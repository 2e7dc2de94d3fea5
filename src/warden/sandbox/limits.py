"""
Execution limits and command descriptions handed to runtime adapters.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

from ..models import Constraints


def _stricter(base: float | int | None, tighter: float | int | None):
    if tighter is None:
        return base
    if base is None:
        return tighter
    return min(base, tighter)


@dataclass(frozen=True)
class ExecutionLimits:
    """
    Limits enforced for one execution.

    Attributes:
        timeout_seconds: Wall-clock limit.
        max_output_bytes: Combined stdout/stderr cap.
        max_memory_bytes: Address space cap (None = unlimited).
        path_prefixes: Absolute paths the execution may touch (empty = any).
        deny_network: Whether network access must be blocked.
    """

    timeout_seconds: float
    max_output_bytes: int
    max_memory_bytes: int | None = None
    path_prefixes: tuple[str, ...] = ()
    deny_network: bool = False

    @property
    def restricts_filesystem(self) -> bool:
        return bool(self.path_prefixes)

    @classmethod
    def build(
        cls,
        timeout_seconds: float,
        max_output_bytes: int,
        max_memory_bytes: int | None = None,
        constraints: Constraints | None = None,
    ) -> "ExecutionLimits":
        """
        Merge configured limits with decision constraints.

        The stricter value wins for every numeric limit.

        Args:
            timeout_seconds: Configured timeout.
            max_output_bytes: Configured output cap.
            max_memory_bytes: Configured memory cap.
            constraints: Constraints attached to the policy decision.

        Returns:
            Effective limits.
        """
        if constraints is None:
            return cls(
                timeout_seconds=timeout_seconds,
                max_output_bytes=max_output_bytes,
                max_memory_bytes=max_memory_bytes,
            )
        return cls(
            timeout_seconds=_stricter(timeout_seconds, constraints.timeout_seconds),
            max_output_bytes=_stricter(max_output_bytes, constraints.max_output_bytes),
            max_memory_bytes=max_memory_bytes,
            path_prefixes=tuple(constraints.path_prefixes),
            deny_network=constraints.deny_network,
        )


@dataclass(frozen=True)
class CommandSpec:
    """
    Process to run through a runtime adapter.

    Attributes:
        argv: Program and arguments (never interpreted by a shell).
        cwd: Working directory.
        stdin: Bytes written to the process stdin.
        env: Extra environment variables.
        tool: Tool name, used in error messages.
    """

    argv: tuple[str, ...]
    cwd: str | None = None
    stdin: bytes | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    tool: str = ""

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("CommandSpec requires a non-empty argv")
        object.__setattr__(self, "argv", tuple(self.argv))


@dataclass(frozen=True)
class ExecutionOutput:
    """Captured result of a finished process."""

    stdout: str
    stderr: str
    exit_code: int
    output_bytes: int
    wall_time_seconds: float

    @property
    def combined(self) -> str:
        """stdout followed by a labelled stderr section."""
        output = self.stdout
        if self.stderr:
            output += f"\n\n[stderr]\n{self.stderr}"
        return output
