"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from deepsearch.models.llm import LLMToolDefinition
from deepsearch.utils.cancellation import CancellationToken

ToolHandler = Callable[[Any, CancellationToken], Awaitable[Any]]


class ToolErrorKind(StrEnum):
    """Why a tool invocation produced no result."""

    INVALID_ARGUMENTS = "InvalidArguments"
    UNKNOWN_TOOL = "UnknownTool"
    PROVIDER_ERROR = "ProviderError"
    CANCELLED = "Cancelled"
    EXECUTION_ERROR = "ExecutionError"


class StructuredToolError(BaseModel):
    """A tool failure handed back to the model as data."""

    kind: ToolErrorKind
    message: str

    def as_payload(self) -> dict[str, str]:
        """Return the error in the shape sent to the model."""
        return {"error": self.message, "kind": self.kind.value}


@dataclass
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: Any) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)

    def to_llm_definition(self) -> LLMToolDefinition:
        return LLMToolDefinition(name=self.name, description=self.description, input_schema=self.get_json_schema())
