"""Tool registry and dispatch for model-requested function calls."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as ArgsValidationError

from cart_assistant.analytics.logger import logger
from cart_assistant.utils.cache import CATALOG_FAMILY, CART_FAMILY, ToolCache
from cart_assistant.utils.exceptions import ToolExecutionError

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_NOT_FOUND = "not_found"
STATUS_PROPOSAL_READY = "proposal_ready"


@dataclass
class ToolResult:
    """Outcome of one tool call, serialized flat for the model."""

    status: str
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    # Set when the handler raised unexpectedly; never sent to the model
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @classmethod
    def success(cls, message: str = "", **data) -> "ToolResult":
        return cls(STATUS_SUCCESS, message, data)

    @classmethod
    def error(cls, message: str, **data) -> "ToolResult":
        return cls(STATUS_ERROR, message, data)

    @classmethod
    def not_found(cls, message: str, **data) -> "ToolResult":
        return cls(STATUS_NOT_FOUND, message, data)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ToolResult":
        payload = dict(payload)
        status = payload.pop("status", STATUS_ERROR)
        message = payload.pop("message", "")
        return cls(status, message, payload)

    @property
    def ok(self) -> bool:
        return self.status in (STATUS_SUCCESS, STATUS_PROPOSAL_READY)

    def to_dict(self) -> Dict[str, Any]:
        result = {"status": self.status}
        if self.message:
            result["message"] = self.message
        result.update(self.data)
        return result


class NoArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CommerceTool:
    """Base class for tools the model may call.

    Subclasses declare their argument model, the parameter schema sent to
    the model, and whether results are cacheable or mutate the cart.
    """

    args_model: Type[BaseModel] = NoArgs
    cache_family: str = CATALOG_FAMILY
    mutates_cart: bool = False

    def __init__(self, name: str, description: str, cache_ttl: Optional[int] = None):
        self.name = name
        self.description = description
        self.cache_ttl = cache_ttl

    async def execute(self, args: BaseModel, context) -> ToolResult:
        """Execute the tool."""
        raise NotImplementedError

    def get_schema(self) -> Dict[str, Any]:
        """Get tool schema for LLM."""
        schema = {"name": self.name, "description": self.description}
        parameters = self.get_parameters()
        if parameters:
            schema["parameters"] = parameters
        return schema

    def get_parameters(self) -> Dict[str, Any]:
        """Get parameter schema."""
        return {}


class ToolRegistry:
    """Maps tool names to handlers and runs them with caching.

    ``dispatch`` never raises: unknown tools, invalid arguments and handler
    failures all come back as an error ``ToolResult`` the model can react to.
    """

    def __init__(self, cache: Optional[ToolCache] = None):
        self.tools: Dict[str, CommerceTool] = {}
        self.cache = cache

    def register(self, tool: CommerceTool):
        """Register a tool."""
        self.tools[tool.name] = tool
        logger.info(f"Registered tool: {tool.name}")

    def get_tool(self, name: str) -> Optional[CommerceTool]:
        """Get a tool by name."""
        return self.tools.get(name)

    def resolve(self, name: str) -> CommerceTool:
        tool = self.tools.get(name)
        if tool is None:
            raise ToolExecutionError(f"Unknown tool: {name}", tool_name=name)
        return tool

    def list_tools(self) -> List[Dict[str, Any]]:
        """List all registered tools."""
        return [tool.get_schema() for tool in self.tools.values()]

    def function_declarations(self) -> List[Dict[str, Any]]:
        """``tools`` block of an LLM request."""
        return [{"functionDeclarations": self.list_tools()}]

    def is_mutating(self, name: str) -> bool:
        tool = self.tools.get(name)
        return bool(tool and tool.mutates_cart)

    def _cache_key(self, tool: CommerceTool, args: BaseModel, context) -> str:
        scope = context.cart_id if tool.cache_family == CART_FAMILY else None
        return self.cache.key(tool.name, args.model_dump(), scope=scope, family=tool.cache_family)

    async def dispatch(self, name: str, args: Optional[Dict[str, Any]], context) -> ToolResult:
        """Validate, run and (where allowed) cache a tool call."""
        try:
            tool = self.resolve(name)
        except ToolExecutionError as e:
            logger.warning(e.message)
            return ToolResult.error(e.message)

        try:
            validated = tool.args_model.model_validate(args or {})
        except ArgsValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}" for err in e.errors()
            )
            logger.warning(f"Invalid arguments for {name}: {problems}")
            return ToolResult.error(f"Invalid arguments for {name}: {problems}")

        cache_key = None
        if self.cache and tool.cache_ttl:
            cache_key = self._cache_key(tool, validated, context)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for {name}")
                return ToolResult.from_dict(cached)

        try:
            result = await tool.execute(validated, context)
        except ToolExecutionError as e:
            logger.warning(f"Tool {name} failed: {e.message}")
            result = ToolResult.error(e.message)
        except Exception as e:
            logger.error(f"Error executing tool {name}: {e}", exc_info=True)
            result = ToolResult.error(f"{name} could not be completed")
            result.exception = e
        finally:
            if tool.mutates_cart and self.cache:
                await self.cache.invalidate_pattern(self.cache.cart_prefix(context.cart_id))

        if cache_key and result.status == STATUS_SUCCESS:
            await self.cache.set(cache_key, result.to_dict(), ttl=tool.cache_ttl)

        return result
