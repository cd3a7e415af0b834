"""Enumerations for Pulpit.

This module defines the enum types used by the gateway to avoid magic
strings in state machines and outcomes.
"""

from enum import Enum


class ConnectionState(str, Enum):
    """Per-connection protocol states.

    A connection starts UNAUTHENTICATED and ends CLOSED; there is no way
    back to an earlier state.

    Example:
        >>> ConnectionState.CLOSED.is_terminal()
        True
    """

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"

    def is_terminal(self) -> bool:
        return self is ConnectionState.CLOSED


class ExecutionStatus(str, Enum):
    """Outcome of an execution request.

    TIMED_OUT is kept apart from FAILED so callers can tell "the device said
    no" from "the device never answered". ACCEPTED means the command was
    handed to a fire-and-forget channel and no result can be confirmed.
    """

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ACCEPTED = "accepted"


class DeliveryChannel(str, Enum):
    """Path an execution took to reach its target."""

    SOCKET = "socket"
    PUSH = "push"
    WEBHOOK = "webhook"


class ScheduledTaskType(str, Enum):
    NOTIFICATION = "notification"
    ACTION = "action"


class ScheduledTaskStatus(str, Enum):
    """Scheduled task lifecycle.

    PENDING tasks are claimed by a sweep (-> EXECUTING) or cancelled by a
    caller (-> CANCELLED); the two are mutually exclusive.
    """

    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def terminal_states(cls) -> frozenset["ScheduledTaskStatus"]:
        return frozenset({cls.COMPLETED, cls.FAILED, cls.CANCELLED})

    def is_terminal(self) -> bool:
        return self in self.terminal_states()
