"""Tests for the zone operation poller."""

import pytest
from google.api_core.exceptions import ServiceUnavailable
from google.cloud import compute_v1

from actuator.errors import OperationError, OperationTimeoutError
from actuator.operations import OperationPoller, collect_operation_errors, operation_status
from gce_mock import FakeClock, MockComputeService, zone_url

PROJECT = "my-project"
ZONE = "us-central1-f"


def _start_operation(compute: MockComputeService) -> compute_v1.Operation:
    return compute.instances_insert(PROJECT, ZONE, compute_v1.Instance(name="worker-1"))


class TestCollectOperationErrors:
    """Tests for operation error aggregation."""

    def test_no_errors(self) -> None:
        """Test that a clean operation has no error message."""
        assert collect_operation_errors(compute_v1.Operation(status=compute_v1.Operation.Status.DONE)) is None

    def test_joins_all_messages(self) -> None:
        """Test that every error message is kept, newline terminated."""
        op = compute_v1.Operation(
            error=compute_v1.Error(
                errors=[
                    compute_v1.Errors(message="quota exceeded"),
                    compute_v1.Errors(message="zone exhausted"),
                ]
            )
        )

        assert collect_operation_errors(op) == "quota exceeded\nzone exhausted\n"


class TestOperationStatus:
    """Tests for reading an operation's status."""

    def test_enum_status(self) -> None:
        """Test the status as the client returns it."""
        op = compute_v1.Operation(status=compute_v1.Operation.Status.RUNNING)

        assert operation_status(op) == "RUNNING"

    def test_status_set_by_name(self) -> None:
        """Test that a status given by name reads back as that name."""
        assert operation_status(compute_v1.Operation(status="DONE")) == "DONE"


class TestOperationPoller:
    """Tests for OperationPoller state machine."""

    def test_done_operation_returns_without_polling(self) -> None:
        """Test that an already finished operation needs no re-fetch."""
        compute = MockComputeService()
        clock = FakeClock()
        poller = OperationPoller(compute, clock=clock)

        result = poller.wait(PROJECT, _start_operation(compute))

        assert result.status == compute_v1.Operation.Status.DONE
        assert compute.calls_to("zone_operations_get") == []
        assert clock.sleeps == []

    def test_polls_until_done(self) -> None:
        """Test re-fetching at the poll interval until DONE."""
        compute = MockComputeService(operation_polls=3)
        clock = FakeClock()
        poller = OperationPoller(compute, poll_interval_seconds=5, clock=clock)

        result = poller.wait(PROJECT, _start_operation(compute))

        assert result.status == compute_v1.Operation.Status.DONE
        assert clock.sleeps == [5, 5, 5]
        polls = compute.calls_to("zone_operations_get")
        assert len(polls) == 3
        # Zone is passed as the basename of the operation's zone URL
        assert polls[0] == ("zone_operations_get", PROJECT, ZONE, "operation-1")

    def test_operation_errors_fail_the_wait(self) -> None:
        """Test that reported errors raise with all messages."""
        compute = MockComputeService()
        compute.operation_errors = ["QUOTA_EXCEEDED", "ZONE_RESOURCE_POOL_EXHAUSTED"]
        poller = OperationPoller(compute, clock=FakeClock())

        with pytest.raises(OperationError) as exc_info:
            poller.wait(PROJECT, _start_operation(compute))

        assert str(exc_info.value) == "QUOTA_EXCEEDED\nZONE_RESOURCE_POOL_EXHAUSTED\n"
        assert not isinstance(exc_info.value, OperationTimeoutError)

    def test_timeout(self) -> None:
        """Test that an operation that never finishes times out."""
        compute = MockComputeService(operation_polls=1000)
        clock = FakeClock()
        poller = OperationPoller(compute, timeout_seconds=30, poll_interval_seconds=5, clock=clock)

        with pytest.raises(OperationTimeoutError) as exc_info:
            poller.wait(PROJECT, _start_operation(compute))

        error = exc_info.value
        assert error.operation_type == "insert"
        assert error.name == "operation-1"
        assert error.elapsed_seconds == 30
        assert "timed out after 30.0s" in str(error)
        assert sum(clock.sleeps) == 30

    def test_last_sleep_is_capped_at_deadline(self) -> None:
        """Test that the poller never sleeps past the timeout."""
        compute = MockComputeService(operation_polls=1000)
        clock = FakeClock()
        poller = OperationPoller(compute, timeout_seconds=12, poll_interval_seconds=5, clock=clock)

        with pytest.raises(OperationTimeoutError):
            poller.wait(PROJECT, _start_operation(compute))

        assert clock.sleeps == [5, 5, 2]

    def test_refetch_errors_propagate(self) -> None:
        """Test that a failing operation re-fetch is not swallowed."""
        compute = MockComputeService(operation_polls=2)
        compute.fail_next("zone_operations_get", ServiceUnavailable("backend unavailable"))
        poller = OperationPoller(compute, clock=FakeClock())

        with pytest.raises(ServiceUnavailable):
            poller.wait(PROJECT, _start_operation(compute))

    def test_zone_url_basename(self) -> None:
        """Test that fully qualified zone URLs are reduced to the zone name."""
        compute = MockComputeService(operation_polls=1)
        poller = OperationPoller(compute, clock=FakeClock())
        op = _start_operation(compute)

        assert op.zone == zone_url(PROJECT, ZONE)
        poller.wait(PROJECT, op)

        assert compute.calls_to("zone_operations_get")[0][2] == ZONE

    def test_client_shaped_operation(self) -> None:
        """Test a wait on an operation shaped like a real insert response."""
        compute = MockComputeService()
        clock = FakeClock()
        poller = OperationPoller(compute, clock=clock)
        op = compute_v1.Operation(
            name="operation-1700000000000-abc",
            operation_type="insert",
            zone=zone_url(PROJECT, ZONE),
            status=compute_v1.Operation.Status.DONE,
            progress=100,
        )

        result = poller.wait(PROJECT, op)

        assert result is op
        assert compute.calls_to("zone_operations_get") == []
        assert clock.sleeps == []
