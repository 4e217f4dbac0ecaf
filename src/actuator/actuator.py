"""GCE machine actuator.

Translates Machine lifecycle requests into Compute Engine calls:

1. Decode the cluster and machine provider configs
2. Resolve the instance backing the Machine (status, annotations, config)
3. Insert or delete the instance and wait for the zone operation
4. Record identity annotations and the observed instance on the Machine

Every operation is synchronous and idempotent: existence checks make create
and delete safe to repeat, and the caller's loop is responsible for retries.
Provider errors are never retried here.

A Machine client is optional. Without one the actuator runs in bootstrap
mode: nothing is persisted and created instances are labelled so that a
later reconciliation can adopt them.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Protocol

from google.api_core.exceptions import GoogleAPIError
from google.cloud import compute_v1

from .codec import ProviderConfigCodec, ProviderConfigDecodeError
from .compute import ComputeService
from .config import ActuatorConfig
from .errors import (
    ActuatorError,
    CurrentStateUnavailableError,
    MachineError,
    OperationError,
    RemoteCommandError,
    create_machine,
    delete_machine,
    invalid_machine_configuration,
    update_machine,
)
from .identity import (
    BOOTSTRAP_LABEL_KEY,
    InstanceIdentity,
    InstanceLocator,
    current_machine_from_status,
    observe,
    set_identity_annotations,
)
from .images import ImageResolver
from .machine_setup import ConfigParams, MachineSetupConfigGetter
from .manifests import MachineClient
from .metadata import CertificateAuthority, MetadataBuilder, service_account_for
from .models import (
    MACHINE_FINALIZER,
    Cluster,
    GCEClusterProviderConfig,
    GCEMachineProviderConfig,
    Machine,
)
from .operations import Clock, OperationPoller
from .remote import RemoteCommandRunner
from .update import ADMIN_KUBECONFIG, MasterUpgrader, requires_update

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "global/networks/default"
EXTERNAL_NAT_NAME = "External NAT"
ONE_TO_ONE_NAT = "ONE_TO_ONE_NAT"
PRIMARY_INTERFACE_NAME = "nic0"
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
HTTPS_SERVER_TAG = "https-server"


class MachineActuator(Protocol):
    """Lifecycle operations a machine controller drives."""

    def create(self, cluster: Cluster, machine: Machine) -> None: ...

    def delete(self, cluster: Cluster, machine: Machine) -> None: ...

    def update(self, cluster: Cluster, goal_machine: Machine) -> None: ...

    def exists(self, cluster: Cluster, machine: Machine) -> bool: ...

    def get_ip(self, cluster: Cluster, machine: Machine) -> str: ...


def new_disks(
    machine_config: GCEMachineProviderConfig,
    zone: str,
    image_path: str,
    min_boot_disk_size_gb: int,
) -> list[compute_v1.AttachedDisk]:
    """Build the attached disks for a new instance.

    The first configured disk is the boot disk: it carries the image and is
    grown to ``min_boot_disk_size_gb`` when configured smaller.
    """
    disks = []
    for idx, disk in enumerate(machine_config.disks):
        params = disk.initialize_params
        initialize_params = compute_v1.AttachedDiskInitializeParams(
            disk_size_gb=params.disk_size_gb,
            disk_type=f"zones/{zone}/diskTypes/{params.disk_type}",
        )
        attached = compute_v1.AttachedDisk(auto_delete=True, initialize_params=initialize_params)
        if idx == 0:
            initialize_params.source_image = image_path
            if params.disk_size_gb < min_boot_disk_size_gb:
                logger.info(
                    "Boot disk size raised to minimum",
                    extra={"configured_gb": params.disk_size_gb, "minimum_gb": min_boot_disk_size_gb},
                )
                initialize_params.disk_size_gb = min_boot_disk_size_gb
            attached.boot = True
        disks.append(attached)
    return disks


def nat_ip(instance: compute_v1.Instance) -> str:
    """External NAT address of the instance's primary interface, or "".

    When ``nic0`` has several access configs, the last one carrying an
    address wins; configs without an address are skipped.
    """
    address = ""
    for interface in instance.network_interfaces:
        if interface.name != PRIMARY_INTERFACE_NAME:
            continue
        for access_config in interface.access_configs:
            if access_config.nat_i_p:
                address = access_config.nat_i_p
    return address


class GCEMachineActuator:
    """MachineActuator backed by Compute Engine.

    Collaborators are injected so the actuator can run against the real API,
    an in-memory fake in tests, or without a Machine client while the first
    master is bootstrapped.
    """

    def __init__(
        self,
        compute: ComputeService,
        *,
        config: ActuatorConfig | None = None,
        codec: ProviderConfigCodec | None = None,
        machine_client: MachineClient | None = None,
        machine_setup_config_getter: MachineSetupConfigGetter | None = None,
        remote_runner: RemoteCommandRunner | None = None,
        certificate_authority: CertificateAuthority | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._compute = compute
        self._config = config or ActuatorConfig()
        self._codec = codec or ProviderConfigCodec()
        self._machine_client = machine_client
        self._setup_getter = machine_setup_config_getter
        self._remote_runner = remote_runner

        self._poller = OperationPoller(
            compute,
            timeout_seconds=self._config.operation_timeout_seconds,
            poll_interval_seconds=self._config.operation_poll_interval_seconds,
            clock=clock,
        )
        self._images = ImageResolver(compute, self._config.default_image_path)
        self._locator = InstanceLocator(compute, self._codec)
        self._metadata = MetadataBuilder(self._config.kubeadm_token, certificate_authority)

    # -------------------------------------------------------------------------
    # Lifecycle operations
    # -------------------------------------------------------------------------

    def exists(self, cluster: Cluster, machine: Machine) -> bool:
        """Check whether the instance backing the machine exists."""
        return self._locator.instance_if_exists(cluster, machine) is not None

    def create(self, cluster: Cluster, machine: Machine) -> None:
        """Create the instance for a machine unless it already exists.

        Raises:
            ActuatorError: If no machine setup config getter is configured.
            MachineError: For invalid configuration or a failed insert.
            MachineSetupError: If the catalog has no single matching entry.
        """
        if self._setup_getter is None:
            raise ActuatorError("a valid machine setup config getter is required")

        machine_config, cluster_config = self._decode_configs(cluster, machine)
        self._validate_machine(machine)
        if not machine_config.disks:
            raise self._handle_machine_error(
                machine, invalid_machine_configuration("at least one disk is required")
            )

        params = ConfigParams(
            os=machine_config.os,
            roles=tuple(machine.spec.roles),
            versions=machine.spec.versions,
        )
        setup = self._setup_getter.get_machine_setup_config()
        image_path = self._images.get_image_path(setup.get_image(params))
        try:
            metadata = self._metadata.build(cluster, machine, cluster_config, setup.get_metadata(params))
        except MachineError as e:
            self._handle_machine_error(machine, e)
            raise

        if self._locator.instance_if_exists(cluster, machine) is not None:
            logger.info("Skipped creating a VM that already exists", extra={"machine": machine.name})
            return

        identity = InstanceIdentity(
            project=cluster_config.project, zone=machine_config.zone, name=machine.name
        )
        instance = self._build_instance(
            cluster, machine, machine_config, identity, image_path, metadata
        )

        logger.info(
            "Creating instance",
            extra={"machine": machine.name, "instance": str(identity), "image": image_path},
        )
        try:
            operation = self._compute.instances_insert(identity.project, identity.zone, instance)
            self._poller.wait(identity.project, operation)
        except (GoogleAPIError, OperationError) as e:
            raise self._handle_machine_error(
                machine, create_machine("error creating GCE instance: %s", e)
            ) from e
        logger.info("Created instance", extra={"machine": machine.name, "instance": str(identity)})

        # Bootstrap machines are adopted later through update.
        if self._machine_client is not None:
            self._update_annotations(machine, identity)

    def delete(self, cluster: Cluster, machine: Machine) -> None:
        """Delete the instance backing a machine and release its finalizer.

        Raises:
            MachineError: For invalid configuration or a failed delete.
        """
        if self._locator.instance_if_exists(cluster, machine) is None:
            logger.info("Skipped deleting a VM that is already deleted", extra={"machine": machine.name})
            return

        self._delete_instance(cluster, machine)

        if self._machine_client is not None:
            machine.metadata.finalizers = [
                f for f in machine.metadata.finalizers if f != MACHINE_FINALIZER
            ]
            self._machine_client.update(machine)

    def update(self, cluster: Cluster, goal_machine: Machine) -> None:
        """Bring the instance in line with the goal machine.

        Masters are upgraded in place; every other role is replaced by
        deleting the old instance and creating a new one. When either path
        fails, the failure is still written into the machine's status before
        the first error is raised.

        Raises:
            MachineError: For invalid configuration or a failed update step.
            CurrentStateUnavailableError: If no observed state exists and the
                instance is not a bootstrap instance.
        """
        try:
            self._codec.decode_machine(goal_machine.spec.provider_config)
        except ProviderConfigDecodeError as e:
            raise self._handle_machine_error(
                goal_machine,
                invalid_machine_configuration("Cannot unmarshal machine's providerConfig field: %s", e),
            ) from e
        self._validate_machine(goal_machine)

        current = current_machine_from_status(goal_machine)
        if current is None:
            self._adopt_bootstrap_instance(cluster, goal_machine)
            return

        if not requires_update(current, goal_machine):
            logger.debug("Machine is up to date", extra={"machine": goal_machine.name})
            return

        error: ActuatorError | GoogleAPIError | None = None
        if current.is_master:
            logger.info("Doing an in-place upgrade for master", extra={"machine": goal_machine.name})
            try:
                self._update_master_inplace(cluster, current, goal_machine)
            except (RemoteCommandError, OSError) as e:
                logger.error(
                    "Master in-place update failed",
                    extra={"machine": goal_machine.name, "error": str(e)},
                )
                error = self._handle_machine_error(
                    goal_machine, update_machine("master in-place update failed: %s", e)
                )
        else:
            logger.info("Re-creating machine for update", extra={"machine": goal_machine.name})
            try:
                if self._locator.instance_if_exists(cluster, current) is not None:
                    self._delete_instance(cluster, current, record_on=goal_machine)
            except (ActuatorError, GoogleAPIError) as e:
                logger.error(
                    "Delete machine for update failed",
                    extra={"machine": goal_machine.name, "error": str(e)},
                )
                error = e
            else:
                try:
                    self.create(cluster, goal_machine)
                except (ActuatorError, GoogleAPIError) as e:
                    logger.error(
                        "Create machine for update failed",
                        extra={"machine": goal_machine.name, "error": str(e)},
                    )
                    error = e

        if error is not None:
            if not isinstance(error, MachineError):
                self._handle_machine_error(
                    goal_machine, update_machine("update of machine failed: %s", error)
                )
            raise error

        self._update_instance_status(goal_machine, self._locator.locate(cluster, goal_machine))

    def get_ip(self, cluster: Cluster, machine: Machine) -> str:
        """Public NAT address of the machine's instance, or "" if none is assigned.

        Raises:
            ProviderConfigDecodeError: If either provider config is invalid.
            GoogleAPIError: If the instance cannot be fetched.
        """
        identity = self._locator.config_identity(cluster, machine)
        instance = self._compute.instances_get(identity.project, identity.zone, identity.name)
        return nat_ip(instance)

    def get_kubeconfig(self, cluster: Cluster, master: Machine) -> str:
        """Admin kubeconfig read from a master.

        Raises:
            ActuatorError: If no remote command runner is configured.
            RemoteCommandError: If the file cannot be read.
        """
        if self._remote_runner is None:
            raise ActuatorError("a remote command runner is required to read the kubeconfig")
        identity = self._locator.config_identity(cluster, master)
        return self._remote_runner.run(identity, f"sudo cat {ADMIN_KUBECONFIG}").strip()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _handle_machine_error(self, machine: Machine, err: MachineError) -> MachineError:
        """Record a machine error in status when possible, log it and return it.

        A failed status write is logged; the original error is what the
        caller needs to see.
        """
        if self._machine_client is not None:
            machine.status.error_reason = err.reason.value
            machine.status.error_message = err.message
            try:
                self._machine_client.update_status(machine)
            except Exception as e:
                logger.warning(
                    "Failed to record machine error in status",
                    extra={"machine": machine.name, "error": str(e)},
                )

        logger.error(
            "Machine error: %s",
            err.message,
            extra={"machine": machine.name, "reason": err.reason.value},
        )
        return err

    def _decode_configs(
        self, cluster: Cluster, machine: Machine, *, record_on: Machine | None = None
    ) -> tuple[GCEMachineProviderConfig, GCEClusterProviderConfig]:
        try:
            machine_config = self._codec.decode_machine(machine.spec.provider_config)
            cluster_config = self._codec.decode_cluster(cluster.spec.provider_config)
        except ProviderConfigDecodeError as e:
            raise self._handle_machine_error(
                record_on or machine,
                invalid_machine_configuration("Cannot unmarshal machine's providerConfig field: %s", e),
            ) from e
        return machine_config, cluster_config

    def _validate_machine(self, machine: Machine, *, record_on: Machine | None = None) -> None:
        if not machine.spec.versions.kubelet:
            raise self._handle_machine_error(
                record_on or machine,
                invalid_machine_configuration("spec.versions.kubelet can't be empty"),
            )

    def _build_instance(
        self,
        cluster: Cluster,
        machine: Machine,
        machine_config: GCEMachineProviderConfig,
        identity: InstanceIdentity,
        image_path: str,
        metadata: compute_v1.Metadata,
    ) -> compute_v1.Instance:
        labels: dict[str, str] = {}
        if self._machine_client is None:
            labels[BOOTSTRAP_LABEL_KEY] = "true"

        return compute_v1.Instance(
            name=identity.name,
            machine_type=f"zones/{identity.zone}/machineTypes/{machine_config.machine_type}",
            can_ip_forward=True,
            network_interfaces=[
                compute_v1.NetworkInterface(
                    network=DEFAULT_NETWORK,
                    access_configs=[
                        compute_v1.AccessConfig(name=EXTERNAL_NAT_NAME, type_=ONE_TO_ONE_NAT)
                    ],
                )
            ],
            disks=new_disks(
                machine_config, identity.zone, image_path, self._config.min_boot_disk_size_gb
            ),
            metadata=metadata,
            tags=compute_v1.Tags(items=[HTTPS_SERVER_TAG, f"{cluster.name}-worker"]),
            labels=labels,
            service_accounts=[
                compute_v1.ServiceAccount(
                    email=service_account_for(cluster, machine),
                    scopes=[CLOUD_PLATFORM_SCOPE],
                )
            ],
        )

    def _delete_instance(
        self, cluster: Cluster, machine: Machine, *, record_on: Machine | None = None
    ) -> None:
        """Delete the machine's instance and wait for the operation.

        Unlike ``delete`` this leaves the Machine record untouched, so it can
        be used to replace an instance. Errors are recorded on ``record_on``
        when given; a Machine rebuilt from status must never be persisted.
        """
        record_on = record_on or machine
        self._decode_configs(cluster, machine, record_on=record_on)
        self._validate_machine(machine, record_on=record_on)

        identity = self._locator.locate(cluster, machine)
        logger.info("Deleting instance", extra={"machine": machine.name, "instance": str(identity)})
        try:
            operation = self._compute.instances_delete(identity.project, identity.zone, identity.name)
            self._poller.wait(identity.project, operation)
        except (GoogleAPIError, OperationError) as e:
            raise self._handle_machine_error(
                record_on, delete_machine("error deleting GCE instance: %s", e)
            ) from e
        logger.info("Deleted instance", extra={"machine": machine.name, "instance": str(identity)})

    def _adopt_bootstrap_instance(self, cluster: Cluster, machine: Machine) -> None:
        """Populate annotations and status for an instance created in bootstrap mode."""
        instance = self._locator.instance_if_exists(cluster, machine)
        if instance is None or not instance.labels.get(BOOTSTRAP_LABEL_KEY):
            raise CurrentStateUnavailableError(
                f"cannot retrieve current state to update machine {machine.name}"
            )

        logger.info("Populating current state for bootstrap machine", extra={"machine": machine.name})
        if self._machine_client is not None:
            self._update_annotations(machine, self._locator.locate(cluster, machine))

    def _update_master_inplace(self, cluster: Cluster, old: Machine, new: Machine) -> None:
        if self._remote_runner is None:
            raise RemoteCommandError(new.name, "", "no remote command runner configured")
        target = self._locator.locate(cluster, old)
        MasterUpgrader(self._remote_runner).upgrade(target, old, new)

    def _update_annotations(self, machine: Machine, identity: InstanceIdentity) -> None:
        """Persist the identity annotations and the observed instance."""
        set_identity_annotations(machine, identity)
        self._machine_client.update(machine)
        self._update_instance_status(machine, identity)

    def _update_instance_status(self, machine: Machine, identity: InstanceIdentity) -> None:
        """Record the machine's spec as the observed state of its instance."""
        if self._machine_client is None:
            return

        machine.status.provider_status = observe(machine, identity)
        machine.status.versions = machine.spec.versions.model_copy()
        machine.status.error_reason = None
        machine.status.error_message = None
        machine.status.last_updated = datetime.now(UTC)
        self._machine_client.update_status(machine)
