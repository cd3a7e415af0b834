"""Correlation of device results with waiting callers."""

from pulpit.execution.correlator import ExecutionCorrelator, ExecutionHandle, PendingExecution

__all__ = ["ExecutionCorrelator", "ExecutionHandle", "PendingExecution"]
