"""In-memory Compute Engine for actuator tests.

Holds instances and images per project, hands out zone operations that
finish after a configurable number of polls and supports one-shot error
injection per method.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import compute_v1

ZONE_URL_PREFIX = "https://www.googleapis.com/compute/v1/projects"


def zone_url(project: str, zone: str) -> str:
    return f"{ZONE_URL_PREFIX}/{project}/zones/{zone}"


@dataclass
class MockOperation:
    """A zone operation tracked by the mock."""

    name: str
    operation_type: str
    project: str
    zone: str
    target: str
    polls_remaining: int
    errors: list[str] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.polls_remaining <= 0

    def to_operation(self) -> compute_v1.Operation:
        kwargs = {
            "name": self.name,
            "operation_type": self.operation_type,
            "zone": zone_url(self.project, self.zone),
            "target_link": self.target,
            "status": (
                compute_v1.Operation.Status.DONE
                if self.done or self.errors
                else compute_v1.Operation.Status.RUNNING
            ),
            "progress": 100 if self.done else 50,
        }
        if self.errors:
            kwargs["error"] = compute_v1.Error(
                errors=[compute_v1.Errors(code="ERROR", message=m) for m in self.errors]
            )
        return compute_v1.Operation(**kwargs)


class MockComputeService:
    """ComputeService implementation backed by dictionaries.

    Args:
        operation_polls: Number of ``zone_operations_get`` calls an operation
            needs before it reports DONE. Zero means operations are done as
            soon as they are returned.
    """

    def __init__(self, *, operation_polls: int = 0) -> None:
        self.operation_polls = operation_polls
        self.instances: dict[tuple[str, str, str], compute_v1.Instance] = {}
        self.images: set[tuple[str, str]] = set()
        self.families: set[tuple[str, str]] = set()
        self.operations: dict[str, MockOperation] = {}
        self.inserted: list[compute_v1.Instance] = []
        self.calls: list[tuple[str, ...]] = []
        self.operation_errors: list[str] = []
        self._errors: dict[str, GoogleAPIError] = {}
        self._op_counter = 0
        self._ip_counter = 0

    # -------------------------------------------------------------------------
    # Test setup helpers
    # -------------------------------------------------------------------------

    def add_image(self, project: str, name: str) -> None:
        self.images.add((project, name))

    def add_family(self, project: str, family: str) -> None:
        self.families.add((project, family))

    def add_instance(
        self,
        project: str,
        zone: str,
        name: str,
        *,
        labels: dict[str, str] | None = None,
        nat_ip: str | None = None,
    ) -> compute_v1.Instance:
        """Pre-populate an instance as if it had been created earlier."""
        access_configs = []
        if nat_ip is not None:
            access_configs.append(
                compute_v1.AccessConfig(name="External NAT", type_="ONE_TO_ONE_NAT", nat_i_p=nat_ip)
            )
        instance = compute_v1.Instance(
            name=name,
            zone=zone_url(project, zone),
            status="RUNNING",
            labels=labels or {},
            network_interfaces=[
                compute_v1.NetworkInterface(name="nic0", access_configs=access_configs)
            ],
        )
        self.instances[(project, zone, name)] = instance
        return instance

    def fail_next(self, method: str, error: GoogleAPIError) -> None:
        """Make the next call to ``method`` raise ``error``."""
        self._errors[method] = error

    def has_instance(self, project: str, zone: str, name: str) -> bool:
        return (project, zone, name) in self.instances

    def calls_to(self, method: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] == method]

    # -------------------------------------------------------------------------
    # ComputeService protocol
    # -------------------------------------------------------------------------

    def images_get(self, project: str, image: str) -> compute_v1.Image:
        self._record("images_get", project, image)
        if (project, image) not in self.images:
            raise NotFound(f"image {project}/{image} not found")
        return compute_v1.Image(name=image)

    def images_get_from_family(self, project: str, family: str) -> compute_v1.Image:
        self._record("images_get_from_family", project, family)
        if (project, family) not in self.families:
            raise NotFound(f"image family {project}/{family} not found")
        return compute_v1.Image(name=f"{family}-latest", family=family)

    def instances_get(self, project: str, zone: str, instance: str) -> compute_v1.Instance:
        self._record("instances_get", project, zone, instance)
        try:
            return self.instances[(project, zone, instance)]
        except KeyError:
            raise NotFound(f"instance {project}/{zone}/{instance} not found") from None

    def instances_insert(
        self, project: str, zone: str, instance: compute_v1.Instance
    ) -> compute_v1.Operation:
        self._record("instances_insert", project, zone, instance.name)
        self.inserted.append(instance)
        op = self._new_operation("insert", project, zone, instance.name)
        if not op.errors:
            self.instances[(project, zone, instance.name)] = self._materialize(project, zone, instance)
        return op.to_operation()

    def instances_delete(self, project: str, zone: str, instance: str) -> compute_v1.Operation:
        self._record("instances_delete", project, zone, instance)
        if (project, zone, instance) not in self.instances:
            raise NotFound(f"instance {project}/{zone}/{instance} not found")
        op = self._new_operation("delete", project, zone, instance)
        if not op.errors:
            del self.instances[(project, zone, instance)]
        return op.to_operation()

    def zone_operations_get(self, project: str, zone: str, operation: str) -> compute_v1.Operation:
        self._record("zone_operations_get", project, zone, operation)
        try:
            op = self.operations[operation]
        except KeyError:
            raise NotFound(f"operation {operation} not found") from None
        op.polls_remaining -= 1
        return op.to_operation()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _record(self, method: str, *args: str) -> None:
        self.calls.append((method, *args))
        error = self._errors.pop(method, None)
        if error is not None:
            raise error

    def _new_operation(self, op_type: str, project: str, zone: str, target: str) -> MockOperation:
        self._op_counter += 1
        op = MockOperation(
            name=f"operation-{self._op_counter}",
            operation_type=op_type,
            project=project,
            zone=zone,
            target=target,
            polls_remaining=self.operation_polls,
            errors=list(self.operation_errors),
        )
        self.operations[op.name] = op
        return op

    def _materialize(
        self, project: str, zone: str, instance: compute_v1.Instance
    ) -> compute_v1.Instance:
        """Copy an inserted instance and fill in what GCE assigns."""
        stored = compute_v1.Instance.deserialize(compute_v1.Instance.serialize(instance))
        stored.zone = zone_url(project, zone)
        stored.status = "RUNNING"
        interfaces = []
        for idx, nic in enumerate(instance.network_interfaces):
            access_configs = []
            for access_config in nic.access_configs:
                self._ip_counter += 1
                access_configs.append(
                    compute_v1.AccessConfig(
                        name=access_config.name,
                        type_=access_config.type_,
                        nat_i_p=f"203.0.113.{self._ip_counter}",
                    )
                )
            interfaces.append(
                compute_v1.NetworkInterface(
                    name=f"nic{idx}", network=nic.network, access_configs=access_configs
                )
            )
        stored.network_interfaces = interfaces
        return stored
