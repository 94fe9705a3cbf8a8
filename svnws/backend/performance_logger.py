"""Timing of backend commands."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional, Any, Generator, List

SLOW_COMMAND_SECONDS = 10.0
VERY_SLOW_COMMAND_SECONDS = 30.0


@dataclass
class PerformanceMetrics:
    """Performance metrics for one backend operation."""
    operation: str
    duration: float
    start_time: float
    end_time: float
    context: Optional[Dict[str, Any]] = None
    success: bool = True


class PerformanceLogger:
    """
    Timing utilities for svn commands.

    Keeps the most recent metrics per operation name so a long-running
    process (the MCP server) can report a summary.
    """

    def __init__(self, logger_name: str = 'svnws.performance'):
        self.logger = logging.getLogger(logger_name)
        self._metrics: Dict[str, PerformanceMetrics] = {}

    @contextmanager
    def time_operation(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        log_level: int = logging.DEBUG
    ) -> Generator[None, None, None]:
        """
        Context manager for timing operations.

        Args:
            operation: Name of the operation being timed
            context: Additional context information
            log_level: Logging level for performance messages
        """
        start_time = time.time()
        self.logger.log(log_level, f"Starting {operation}", extra={'operation': operation})

        success = True
        try:
            yield
        except Exception as e:
            success = False
            self.logger.debug(
                f"{operation} failed after {time.time() - start_time:.3f}s: {e}",
                extra={'operation': operation}
            )
            raise
        finally:
            end_time = time.time()
            duration = end_time - start_time
            self._metrics[operation] = PerformanceMetrics(
                operation=operation,
                duration=duration,
                start_time=start_time,
                end_time=end_time,
                context=context,
                success=success
            )

            if success:
                self.logger.log(
                    log_level, f"{operation} completed in {duration:.3f}s",
                    extra={'operation': operation}
                )
                if context:
                    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
                    self.logger.debug(f"{operation} context: {context_str}", extra={'operation': operation})

    def log_svn_command_performance(self, command: List[str], duration: float, success: bool = True) -> None:
        """Log how long an svn invocation took, warning on slow ones."""
        status = "succeeded" if success else "failed"
        command_str = " ".join(command)

        self.logger.debug(f"svn command '{command_str}' {status} in {duration:.3f}s")

        if duration > VERY_SLOW_COMMAND_SECONDS:
            self.logger.error(f"Very slow svn operation: '{command_str}' took {duration:.3f}s")
        elif duration > SLOW_COMMAND_SECONDS:
            self.logger.warning(f"Slow svn operation detected: '{command_str}' took {duration:.3f}s")

    def get_performance_summary(self) -> Dict[str, Any]:
        """Summary of the recorded metrics."""
        if not self._metrics:
            return {"total_operations": 0, "average_duration": 0.0}

        total_operations = len(self._metrics)
        total_duration = sum(m.duration for m in self._metrics.values())
        successful_ops = sum(1 for m in self._metrics.values() if m.success)
        slowest_op = max(self._metrics.values(), key=lambda m: m.duration)

        return {
            "total_operations": total_operations,
            "total_duration": total_duration,
            "average_duration": total_duration / total_operations,
            "success_rate": successful_ops / total_operations,
            "slowest_operation": {
                "name": slowest_op.operation,
                "duration": slowest_op.duration
            }
        }


_performance_logger: Optional[PerformanceLogger] = None


def get_performance_logger() -> PerformanceLogger:
    """Get or create the global performance logger instance."""
    global _performance_logger
    if _performance_logger is None:
        _performance_logger = PerformanceLogger()
    return _performance_logger
