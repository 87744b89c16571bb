import structlog
import logging
import sys
from typing import Dict, Any, Optional
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "searchchat"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service and turn context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()

    context = structlog.contextvars.get_contextvars()
    for key in ("service", "environment", "thread_id", "turn_id"):
        if key not in event_dict and context.get(key):
            event_dict[key] = context[key]

    return event_dict


class TurnLogger:
    """Specialized logger for turn orchestration"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_transition(
        self,
        thread_id: str,
        from_state: str,
        to_state: str,
        condition: Optional[str] = None,
    ):
        """Log engine state transitions"""

        self.logger.info(
            "turn_transition",
            thread_id=thread_id,
            from_state=from_state,
            to_state=to_state,
            condition=condition,
        )

    def log_tool_execution(
        self,
        tool_name: str,
        thread_id: str,
        input_data: Dict[str, Any],
        result_count: Optional[int] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log tool execution events"""

        self.logger.info(
            "tool_execution",
            tool_name=tool_name,
            thread_id=thread_id,
            input_data=input_data,
            result_count=result_count,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_turn_finished(
        self,
        thread_id: str,
        status: str,
        duration_ms: float,
        tool_rounds: int,
        error: Optional[str] = None,
    ):
        """Log the end of a turn"""

        log = self.logger.warning if error else self.logger.info
        log(
            "turn_finished",
            thread_id=thread_id,
            status=status,
            duration_ms=duration_ms,
            tool_rounds=tool_rounds,
            error=error,
        )


# Global logger instance
turn_logger = TurnLogger("searchchat.turn")


@dataclass
class LatencyStats:
    """Running latency aggregate for one operation"""
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0,
            "min": self.min_ms or 0,
            "max": self.max_ms,
        }


class MetricsCollector:
    """In-process turn and tool metrics, summarized on /health"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}

    def record_latency(self, operation: str, duration_ms: float):
        self.latencies[operation].add(duration_ms)
        turn_logger.logger.debug("metric", metric_type="latency", operation=operation, duration_ms=duration_ms)

    def increment_counter(self, name: str, value: int = 1):
        self.counters[name] += value
        turn_logger.logger.debug("metric", metric_type="counter", name=name, value=value)

    def set_gauge(self, name: str, value: float):
        self.gauges[name] = value

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Flatten all metrics; latencies are keyed ``latency.<operation>``"""

        summary: Dict[str, Any] = {
            f"latency.{operation}": stats.summary() for operation, stats in self.latencies.items()
        }
        summary.update(self.counters)
        summary.update(self.gauges)
        return summary
