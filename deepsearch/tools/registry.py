"""Tools registry for managing AI assistant tools."""

from typing import Any

from pydantic import ValidationError

from deepsearch.errors import OperationCancelled, ProviderError
from deepsearch.models.llm import LLMToolDefinition
from deepsearch.services.crawler import CrawlerService
from deepsearch.services.search import SearchService
from deepsearch.services.tracing import Trace
from deepsearch.tools.base import StructuredToolError, ToolDefinition, ToolErrorKind
from deepsearch.tools.scrape_pages import create_scrape_pages_tool
from deepsearch.tools.search_web import create_search_web_tool
from deepsearch.utils.cancellation import CancellationToken
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)


def _format_validation_error(error: ValidationError) -> str:
    details = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "input"
        details.append(f"{location}: {err['msg']}")
    return "Invalid arguments: " + "; ".join(details)


class ToolsRegistry:
    """Registry for managing AI assistant tools."""

    def __init__(self, search_service: SearchService | None = None, crawler_service: CrawlerService | None = None):
        """Initialize tools registry, registering the default tools for the services given."""
        self._tools: dict[str, ToolDefinition] = {}

        if search_service is not None:
            self.register_tool(create_search_web_tool(search_service))
        if crawler_service is not None:
            self.register_tool(create_scrape_pages_tool(crawler_service))

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        self._tools[tool.name] = tool

    def get_tool_definitions(self) -> list[LLMToolDefinition]:
        """Get the schemas of all registered tools, in registration order."""
        return [tool.to_llm_definition() for tool in self._tools.values()]

    async def dispatch(
        self,
        tool_name: str,
        raw_arguments: Any,
        cancellation: CancellationToken,
        trace: Trace | None = None,
    ) -> Any | StructuredToolError:
        """Validate arguments and run a tool.

        Tool failures are returned as `StructuredToolError` rather than raised,
        so they can be handed back to the model.
        """
        span = trace.span(f"tool:{tool_name}", raw_arguments) if trace else None
        result = await self._dispatch(tool_name, raw_arguments, cancellation)

        if span:
            span.end(result.as_payload() if isinstance(result, StructuredToolError) else result)

        return result

    async def _dispatch(
        self, tool_name: str, raw_arguments: Any, cancellation: CancellationToken
    ) -> Any | StructuredToolError:
        tool = self._tools.get(tool_name)
        if tool is None:
            logger.error(f"Unknown tool requested: {tool_name}")
            return StructuredToolError(kind=ToolErrorKind.UNKNOWN_TOOL, message=f"Unknown tool {tool_name}")

        try:
            params = tool.parse_input(raw_arguments)
        except ValidationError as e:
            logger.warning(f"Tool {tool_name} called with invalid arguments: {raw_arguments}")
            return StructuredToolError(kind=ToolErrorKind.INVALID_ARGUMENTS, message=_format_validation_error(e))

        logger.debug(f"Executing tool: {tool_name} with input: {params}")

        try:
            result = await tool.handler(params, cancellation)
        except OperationCancelled as e:
            logger.info(f"Tool {tool_name} cancelled: {e.reason}")
            return StructuredToolError(kind=ToolErrorKind.CANCELLED, message=e.reason)
        except ProviderError as e:
            logger.warning(f"Tool {tool_name} provider error: {e}")
            return StructuredToolError(kind=ToolErrorKind.PROVIDER_ERROR, message=str(e))
        except Exception as e:
            logger.error(f"Tool {tool_name} failed: {e}", exc_info=True)
            return StructuredToolError(kind=ToolErrorKind.EXECUTION_ERROR, message=f"Error: {e!s}")

        logger.debug(f"Tool {tool_name} succeeded: {str(result)[:100]}...")
        return result


_tools_registry: ToolsRegistry | None = None


def get_tools_registry(
    search_service: SearchService | None = None,
    crawler_service: CrawlerService | None = None,
) -> ToolsRegistry:
    """Get or create tools registry instance."""
    global _tools_registry

    if _tools_registry is None:
        if not search_service or not crawler_service:
            raise ValueError("Must provide services for initial registry creation")

        _tools_registry = ToolsRegistry(search_service, crawler_service)

    return _tools_registry
