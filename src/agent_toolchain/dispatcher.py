import asyncio
import json
import logging
from typing import Any, Optional

from .agent import Agent, DelegateTool
from .errors import ToolError, ToolTimeout, ToolValidationError, UnknownTool
from .messages import ToolCallRequest, ToolResult

logger = logging.getLogger(__name__)


def format_output(output: Any) -> str:
    if output is None:
        return "Tool executed successfully"
    if isinstance(output, str):
        return output
    try:
        return json.dumps(output, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(output)


class ToolDispatcher:
    """Resolves and runs tool calls on behalf of an agent.

    Every failure short of cancellation is returned as an error ToolResult so the
    model can see it and react.
    """

    def __init__(self, timeout: float = 30.0, delegate_timeout: Optional[float] = 300.0):
        self.timeout = timeout
        self.delegate_timeout = delegate_timeout

    async def invoke(self, request: ToolCallRequest, agent: Agent, context=None) -> ToolResult:
        tools = agent.effective_tools()
        try:
            tool = tools.get(request.name)
            if tool is None:
                raise UnknownTool(request.name, tools.get_tool_names())

            problems = tool.validate(request.arguments)
            if problems:
                raise ToolValidationError(request.name, problems)

            timeout = self.delegate_timeout if isinstance(tool, DelegateTool) else self.timeout
            loop = asyncio.get_running_loop()
            started = loop.time()
            try:
                output = await asyncio.wait_for(
                    tool.invoke(dict(request.arguments), context), timeout=timeout
                )
            except asyncio.TimeoutError:
                # a TimeoutError raised by the tool itself is reported as is
                if timeout is None or loop.time() - started < timeout:
                    raise
                raise ToolTimeout(request.name, timeout)
        except Exception as e:
            # ToolError subclasses and failures raised by the tool itself;
            # CancelledError is not an Exception and propagates.
            if not isinstance(e, ToolError):
                logger.exception(f"TOOL ERROR: {request.name} raised unexpectedly")
            else:
                logger.info(f"TOOL ERROR: {request.name} - {e}")
            return ToolResult(
                request.id,
                request.name,
                f"Error ({type(e).__name__}): {e}",
                is_error=True,
                error_type=type(e).__name__,
            )

        return ToolResult(request.id, request.name, format_output(output))
