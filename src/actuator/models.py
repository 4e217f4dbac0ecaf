"""Pydantic models for Machine and Cluster records with validation.

These models provide:
1. Type-safe parsing of Kubernetes-style YAML manifests
2. Validation at the boundary (fail fast, fail loudly)
3. Strongly typed GCE provider configs decoded from opaque blobs
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

# Finalizer the cluster controller puts on every Machine; removed after the
# backing instance is gone so the owner can garbage collect the record.
MACHINE_FINALIZER = "machine.cluster.k8s.io"

# =============================================================================
# Object Metadata
# =============================================================================


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata used by the actuator."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str = ""
    namespace: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)


class ProviderConfig(BaseModel):
    """Opaque, versioned provider-specific configuration blob.

    ``value`` is either a mapping carrying ``apiVersion``/``kind`` or a
    YAML/JSON string. It is only interpreted by the provider-config codec.
    """

    model_config = {"extra": "ignore"}

    value: dict[str, Any] | str | None = None


# =============================================================================
# Machine
# =============================================================================


class MachineRole(str, Enum):
    """Roles a machine can play in the cluster."""

    MASTER = "Master"
    NODE = "Node"


class MachineVersionInfo(BaseModel):
    """Software versions installed on a machine."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    kubelet: str = ""
    control_plane: str = Field("", alias="controlPlane")


class MachineSpec(BaseModel):
    """Desired state of a machine."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Metadata propagated to the node object, distinct from the record's own
    object_meta: ObjectMeta = Field(default_factory=ObjectMeta, alias="metadata")
    provider_config: ProviderConfig = Field(default_factory=ProviderConfig, alias="providerConfig")
    roles: list[MachineRole] = Field(default_factory=list)
    versions: MachineVersionInfo = Field(default_factory=MachineVersionInfo)


class ObservedInstance(BaseModel):
    """Last-observed provider identity of a machine's instance.

    Written after every successful provisioning action together with a
    snapshot of the spec that produced the instance. It is the "current
    state" compared against a goal machine during update.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    project: Annotated[str, Field(min_length=1)]
    zone: Annotated[str, Field(min_length=1)]
    name: Annotated[str, Field(min_length=1)]
    spec: MachineSpec = Field(default_factory=MachineSpec)


class MachineStatus(BaseModel):
    """Observed state of a machine. Output of reconciliation, never input to diffs."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    last_updated: datetime | None = Field(None, alias="lastUpdated")
    versions: MachineVersionInfo | None = None
    error_reason: str | None = Field(None, alias="errorReason")
    error_message: str | None = Field(None, alias="errorMessage")
    provider_status: ObservedInstance | None = Field(None, alias="providerStatus")


class Machine(BaseModel):
    """Desired and observed state of one cluster node."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: MachineSpec = Field(default_factory=MachineSpec)
    status: MachineStatus = Field(default_factory=MachineStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def is_master(self) -> bool:
        return MachineRole.MASTER in self.spec.roles


# =============================================================================
# Cluster
# =============================================================================


class NetworkRanges(BaseModel):
    """CIDR blocks for a cluster network range."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    cidr_blocks: list[str] = Field(default_factory=list, alias="cidrBlocks")

    @field_validator("cidr_blocks")
    @classmethod
    def validate_cidr(cls, v: list[str]) -> list[str]:
        for block in v:
            if "/" not in block:
                raise ValueError(f"cidrBlocks must be in CIDR notation: {block}")
        return v

    @property
    def first(self) -> str:
        return self.cidr_blocks[0] if self.cidr_blocks else ""


class ClusterNetworkingConfig(BaseModel):
    """Pod and service networking of a cluster."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    services: NetworkRanges = Field(default_factory=NetworkRanges)
    pods: NetworkRanges = Field(default_factory=NetworkRanges)
    service_domain: str = Field("cluster.local", alias="serviceDomain")


class ClusterSpec(BaseModel):
    """Desired state of a cluster."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    cluster_network: ClusterNetworkingConfig = Field(
        default_factory=ClusterNetworkingConfig, alias="clusterNetwork"
    )
    provider_config: ProviderConfig = Field(default_factory=ProviderConfig, alias="providerConfig")


class APIEndpoint(BaseModel):
    """Externally reachable endpoint of the cluster API server."""

    model_config = {"extra": "ignore"}

    host: Annotated[str, Field(min_length=1)]
    port: Annotated[int, Field(ge=1, le=65535)] = 443


class ClusterStatus(BaseModel):
    """Observed state of a cluster."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_endpoints: list[APIEndpoint] = Field(default_factory=list, alias="apiEndpoints")


class Cluster(BaseModel):
    """Shared context for all machines in one cluster. Read-only for the actuator."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def name(self) -> str:
        return self.metadata.name


# =============================================================================
# GCE Provider Configs
# =============================================================================


class DiskInitializeParams(BaseModel):
    """Parameters for a new persistent disk."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    disk_size_gb: Annotated[int, Field(ge=0, alias="diskSizeGb")] = 0
    disk_type: str = Field("pd-standard", alias="diskType")


class Disk(BaseModel):
    """A disk attached to the instance. The first one is the boot disk."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    initialize_params: DiskInitializeParams = Field(
        default_factory=DiskInitializeParams, alias="initializeParams"
    )


class GCEMachineProviderConfig(BaseModel):
    """Machine-level GCE configuration."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    zone: Annotated[str, Field(min_length=1)]
    machine_type: Annotated[str, Field(min_length=1, alias="machineType")]
    os: str = ""
    disks: list[Disk] = Field(default_factory=lambda: [Disk()])


class GCEClusterProviderConfig(BaseModel):
    """Cluster-level GCE configuration."""

    model_config = {"extra": "ignore"}

    project: Annotated[str, Field(min_length=1)]
