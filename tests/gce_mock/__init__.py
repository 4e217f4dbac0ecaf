"""GCE API Mock for Integration Testing.

In-memory stand-ins for the actuator's collaborators so lifecycle tests run
without Compute Engine connectivity.

Key Features:
- In-memory instances and images per project and zone
- Zone operations that finish after a configurable number of polls
- One-shot error injection per Compute method
- Recording Machine client and remote command runner
- Deterministic clock for the operation poller

Usage:
    from gce_mock import FakeClock, MockComputeService, MockMachineClient

    compute = MockComputeService(operation_polls=2)
    actuator = GCEMachineActuator(compute, machine_client=MockMachineClient(), clock=FakeClock())
    actuator.create(cluster, machine)

    assert compute.has_instance("my-project", "us-central1-f", "worker-1")
"""

from .clock import FakeClock
from .compute import MockComputeService, MockOperation, zone_url
from .machines import MockMachineClient, MockRemoteRunner, StaticMachineSetupConfigGetter

__all__ = [
    "FakeClock",
    "MockComputeService",
    "MockMachineClient",
    "MockOperation",
    "MockRemoteRunner",
    "StaticMachineSetupConfigGetter",
    "zone_url",
]
