# src/scancore/engine/errors.py
"""
Error taxonomy for scan jobs and batches.

Tool errors are recorded per tool and never fail a job on their own. Job level
errors surface through the job's Failed state, never across the worker thread.
"""
from enum import Enum


class ScanError(Exception):
    """Base class for every error raised by the orchestration core."""

    kind = "error"


class InvalidInput(ScanError):
    kind = "invalid_input"


class ToolError(ScanError):
    kind = "tool_error"

    def __init__(self, tool: str, message: str):
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.message = message


class ToolTimeout(ToolError):
    kind = "timeout"


class ToolExecutionError(ToolError):
    kind = "error"


class AllToolsFailed(ScanError):
    kind = "all_tools_failed"


class AggregationError(ScanError):
    kind = "aggregation_error"


class NotFound(ScanError):
    kind = "not_found"


class PermissionDenied(ScanError):
    kind = "permission_denied"


class CancelOutcome(str, Enum):
    CANCELLED = "cancelled"
    ALREADY_TERMINAL = "already_terminal"
