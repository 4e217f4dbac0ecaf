"""Blocking wait for asynchronous Compute Engine zone operations.

Instance insert and delete return an operation handle immediately; the
actuator blocks until that operation reaches a terminal state or the overall
timeout elapses. The wait is an explicit state machine:

    PENDING -> POLLING -> ... -> DONE | FAILED | TIMED_OUT

with a single suspension point per iteration (sleep until the next poll or
the deadline, whichever comes first). Time is read from an injectable
``Clock`` so the loop can be driven by a fake clock in tests.
"""

from __future__ import annotations

import logging
import posixpath
import time
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from google.cloud import compute_v1

from .compute import ComputeService
from .config import DEFAULT_OPERATION_POLL_INTERVAL_SECONDS, DEFAULT_OPERATION_TIMEOUT_SECONDS
from .errors import OperationError, OperationTimeoutError

logger = logging.getLogger(__name__)

OPERATION_STATUS_DONE = compute_v1.Operation.Status.DONE.name


class Clock(Protocol):
    """Time source for the poller."""

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Clock backed by the real monotonic clock."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class WaitState(str, Enum):
    """States of an operation wait."""

    PENDING = "Pending"
    POLLING = "Polling"
    DONE = "Done"
    TIMED_OUT = "TimedOut"
    FAILED = "Failed"


@dataclass
class OperationWait:
    """Progress of a single operation wait."""

    operation: compute_v1.Operation
    started_at: float
    state: WaitState = WaitState.PENDING
    polls: int = 0


def operation_status(operation: compute_v1.Operation) -> str:
    """Name of the operation's status, such as "RUNNING" or "DONE".

    The client returns the status as a ``compute_v1.Operation.Status`` member;
    operations built from plain strings carry the name itself.
    """
    status = operation.status
    if isinstance(status, Enum):
        return status.name
    return str(status)


def collect_operation_errors(operation: compute_v1.Operation) -> str | None:
    """Join the structured error list of an operation into one message.

    Returns:
        Newline-terminated messages, or None if the operation has no errors.
    """
    errors = list(operation.error.errors)
    if not errors:
        return None
    return "".join(f"{e.message}\n" for e in errors)


class OperationPoller:
    """Waits for zone operations by re-fetching them at a fixed interval."""

    def __init__(
        self,
        compute: ComputeService,
        *,
        timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
        poll_interval_seconds: float = DEFAULT_OPERATION_POLL_INTERVAL_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        self._compute = compute
        self._timeout = timeout_seconds
        self._interval = poll_interval_seconds
        self._clock = clock or SystemClock()

    def wait(self, project: str, operation: compute_v1.Operation) -> compute_v1.Operation:
        """Block until the operation is done.

        Args:
            project: Project that owns the operation.
            operation: Operation handle returned by insert or delete.

        Returns:
            The terminal operation.

        Raises:
            OperationError: If the operation reports errors.
            OperationTimeoutError: If the operation is not done before the timeout.
            GoogleAPIError: If re-fetching the operation fails.
        """
        wait = OperationWait(operation=operation, started_at=self._clock.monotonic())
        op_type, op_name = operation.operation_type, operation.name

        logger.info("Wait for %s %r...", op_type, op_name)
        try:
            while True:
                self._step(project, wait)
                if wait.state == WaitState.DONE:
                    return wait.operation
        finally:
            logger.info(
                "Finish wait for %s %r",
                op_type,
                op_name,
                extra={"state": wait.state.value, "polls": wait.polls},
            )

    def _step(self, project: str, wait: OperationWait) -> None:
        """Advance the wait by one iteration."""
        op = wait.operation

        message = collect_operation_errors(op)
        if message is not None:
            wait.state = WaitState.FAILED
            raise OperationError(message)

        if operation_status(op) == OPERATION_STATUS_DONE:
            wait.state = WaitState.DONE
            return

        logger.debug(
            "Wait for %s %r: %s (%d%%): %s",
            op.operation_type,
            op.name,
            operation_status(op),
            op.progress,
            op.status_message,
        )

        elapsed = self._clock.monotonic() - wait.started_at
        remaining = self._timeout - elapsed
        if remaining > 0:
            self._clock.sleep(min(self._interval, remaining))
            elapsed = self._clock.monotonic() - wait.started_at

        if elapsed >= self._timeout:
            wait.state = WaitState.TIMED_OUT
            raise OperationTimeoutError(op.operation_type, op.name, elapsed)

        wait.operation = self._compute.zone_operations_get(
            project, posixpath.basename(op.zone), op.name
        )
        wait.polls += 1
        wait.state = WaitState.POLLING
