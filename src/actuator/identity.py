"""Instance identity resolution.

Decides which GCE instance corresponds to a Machine. The provider-config of a
Machine may change project or zone after its instance was created; the
instance must stay findable, so identity recorded at creation time wins over
the location derived from the current config:

1. the observed instance record in ``Machine.status``;
2. the identity annotations written after creation;
3. the cluster project, machine zone and Machine name from the configs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from google.api_core.exceptions import GoogleAPIError
from google.cloud import compute_v1

from .codec import ProviderConfigCodec
from .compute import ComputeService, is_not_found
from .models import Cluster, Machine, MachineStatus, ObservedInstance, ProviderConfig

logger = logging.getLogger(__name__)

# Identity annotations persisted on the Machine record
PROJECT_ANNOTATION_KEY = "gcp-project"
ZONE_ANNOTATION_KEY = "gcp-zone"
NAME_ANNOTATION_KEY = "gcp-name"

# Label on instances created without a machine client. The key keeps its
# historical spelling because existing instances carry it.
BOOTSTRAP_LABEL_KEY = "boostrap"


@dataclass(frozen=True)
class InstanceIdentity:
    """Location and name of a GCE instance."""

    project: str
    zone: str
    name: str

    def __str__(self) -> str:
        return f"projects/{self.project}/zones/{self.zone}/instances/{self.name}"


@dataclass(frozen=True)
class IdentityMachine:
    """Machine-shaped view of an observed instance, limited to lookup fields."""

    name: str
    project: str
    zone: str
    provider_config: ProviderConfig

    @property
    def identity(self) -> InstanceIdentity:
        return InstanceIdentity(project=self.project, zone=self.zone, name=self.name)


def derive_identity_machine(status: MachineStatus) -> IdentityMachine | None:
    """Extract the lookup identity recorded in a machine's status.

    Returns:
        The identity view, or None if no instance has been observed yet.
    """
    observed = status.provider_status
    if observed is None:
        return None
    return IdentityMachine(
        name=observed.name,
        project=observed.project,
        zone=observed.zone,
        provider_config=observed.spec.provider_config.model_copy(deep=True),
    )


def current_machine_from_status(goal: Machine) -> Machine | None:
    """Rebuild the machine that produced the observed instance.

    Record metadata (annotations, finalizers) comes from ``goal`` because it
    describes the same record; name and spec come from the snapshot.

    Returns:
        The current machine, or None if no instance has been observed yet.
    """
    observed = goal.status.provider_status
    if observed is None:
        return None
    metadata = goal.metadata.model_copy(deep=True)
    metadata.name = observed.name
    return Machine(
        metadata=metadata,
        spec=observed.spec.model_copy(deep=True),
        status=goal.status.model_copy(deep=True),
    )


def identity_from_annotations(machine: Machine) -> InstanceIdentity | None:
    """Read the identity annotations, or None unless all three are present."""
    annotations = machine.metadata.annotations
    project = annotations.get(PROJECT_ANNOTATION_KEY, "")
    zone = annotations.get(ZONE_ANNOTATION_KEY, "")
    name = annotations.get(NAME_ANNOTATION_KEY, "")
    if not (project and zone and name):
        return None
    return InstanceIdentity(project=project, zone=zone, name=name)


def set_identity_annotations(machine: Machine, identity: InstanceIdentity) -> None:
    machine.metadata.annotations[PROJECT_ANNOTATION_KEY] = identity.project
    machine.metadata.annotations[ZONE_ANNOTATION_KEY] = identity.zone
    machine.metadata.annotations[NAME_ANNOTATION_KEY] = identity.name


def observe(machine: Machine, identity: InstanceIdentity) -> ObservedInstance:
    """Snapshot a machine's spec together with the identity of its instance."""
    return ObservedInstance(
        project=identity.project,
        zone=identity.zone,
        name=identity.name,
        spec=machine.spec.model_copy(deep=True),
    )


class InstanceLocator:
    """Finds the live instance backing a Machine."""

    def __init__(self, compute: ComputeService, codec: ProviderConfigCodec) -> None:
        self._compute = compute
        self._codec = codec

    def config_identity(self, cluster: Cluster, machine: Machine) -> InstanceIdentity:
        """Identity derived from the machine's current provider configs.

        Raises:
            ProviderConfigDecodeError: If either provider config cannot be decoded.
        """
        machine_config = self._codec.decode_machine(machine.spec.provider_config)
        cluster_config = self._codec.decode_cluster(cluster.spec.provider_config)
        return InstanceIdentity(
            project=cluster_config.project, zone=machine_config.zone, name=machine.name
        )

    def locate(self, cluster: Cluster, machine: Machine) -> InstanceIdentity:
        """Pick the identity to look the machine's instance up by."""
        identifying = derive_identity_machine(machine.status)
        if identifying is not None:
            return identifying.identity

        annotated = identity_from_annotations(machine)
        if annotated is not None:
            return annotated

        return self.config_identity(cluster, machine)

    def instance_if_exists(self, cluster: Cluster, machine: Machine) -> compute_v1.Instance | None:
        """Get the instance represented by the machine.

        Returns:
            The instance, or None if the provider reports it does not exist.

        Raises:
            ProviderConfigDecodeError: If the identity must come from configs that
                cannot be decoded.
            GoogleAPIError: For any provider error other than not-found.
        """
        identity = self.locate(cluster, machine)
        try:
            return self._compute.instances_get(identity.project, identity.zone, identity.name)
        except GoogleAPIError as e:
            if is_not_found(e):
                logger.debug("Instance not found", extra={"instance": str(identity)})
                return None
            raise
