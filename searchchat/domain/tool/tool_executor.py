import time
from typing import Optional

from searchchat.domain.errors import CapabilityError
from searchchat.domain.models.conversation import ToolCall
from searchchat.domain.tool.tool_registry import ToolOutput, ToolRegistry
from searchchat.infrastructure.observability.logging import MetricsCollector, turn_logger


class ToolExecutor:
    """Runs tool calls requested by the model"""

    def __init__(self, registry: ToolRegistry, metrics: Optional[MetricsCollector] = None):
        self.registry = registry
        self.metrics = metrics or MetricsCollector()

    async def execute(self, call: ToolCall, thread_id: str) -> ToolOutput:
        """Execute one tool call.

        Raises:
            CapabilityError: Unknown tool, bad arguments, or a failing backend.
        """
        tool = self.registry.get(call.name)
        tool.validate_args(call.args)

        started = time.perf_counter()
        try:
            output = await tool.execute(call.args)
        except CapabilityError as e:
            self._record(call, thread_id, started, error=str(e))
            raise
        except Exception as e:
            self._record(call, thread_id, started, error=str(e))
            raise CapabilityError(call.name, str(e)) from e

        self._record(call, thread_id, started, result_count=len(output.urls))
        return output

    def _record(
        self,
        call: ToolCall,
        thread_id: str,
        started: float,
        result_count: Optional[int] = None,
        error: Optional[str] = None,
    ):
        duration_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_latency(f"tool.{call.name}", duration_ms)
        self.metrics.increment_counter("tool_calls")

        turn_logger.log_tool_execution(
            tool_name=call.name,
            thread_id=thread_id,
            input_data=call.args,
            result_count=result_count,
            duration_ms=round(duration_ms, 2),
            success=error is None,
            error=error,
        )
