"""
Tool interface.

A tool declares a name, a description, the policy action it performs and
a pydantic parameter model. The sandbox validates parameters, evaluates
policy and then calls ``execute`` with a ToolContext.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from ..exceptions import InvalidParametersError
from ..models import ToolSpec
from ..sandbox.context import ToolContext


class ToolParameters(BaseModel):
    """Base parameter model; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class ToolOutput:
    """
    Tool execution output.

    Attributes:
        text: Text handed back to the model.
        data: Optional structured payload.
        exit_code: Process exit code for runtime-backed tools.
        output_bytes: Bytes the process wrote, when the text adds framing
            around the raw output.
    """

    text: str
    data: Mapping[str, Any] | None = None
    exit_code: int | None = None
    output_bytes: int | None = None


class Tool(ABC):
    """
    Base class for sandboxed tools.

    Subclasses set ``name``, ``description``, ``action`` and
    ``Parameters``; ``uses_runtime`` marks tools that spawn processes
    through the runtime adapter.
    """

    name: str = ""
    description: str = ""
    action: str = ""
    Parameters: type[ToolParameters] = ToolParameters
    uses_runtime: bool = False

    def spec(self) -> ToolSpec:
        """
        Describe the tool for the model.

        Returns:
            ToolSpec with the JSON schema of the parameter model.
        """
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=self.Parameters.model_json_schema(),
        )

    def validate(self, payload: Mapping[str, Any]) -> ToolParameters:
        """
        Validate a raw parameter payload.

        Args:
            payload: Parameters requested by the model.

        Returns:
            Validated parameter model.

        Raises:
            InvalidParametersError: If the payload does not match the schema.
        """
        try:
            return self.Parameters.model_validate(dict(payload))
        except ValidationError as e:
            raise InvalidParametersError(
                self.name,
                [{"loc": err["loc"], "msg": err["msg"]} for err in e.errors()],
            ) from e

    @abstractmethod
    async def execute(self, params: ToolParameters, context: ToolContext) -> ToolOutput:
        """
        Execute the tool.

        Args:
            params: Validated parameters.
            context: Execution context.

        Returns:
            Tool output.

        Raises:
            ToolError: Classified execution failure.
        """
