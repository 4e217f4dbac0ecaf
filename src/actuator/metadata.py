"""Instance metadata and service accounts for new machines.

The startup script from the machine setup catalog is prefixed with an
environment prelude carrying the cluster parameters the script needs to
join (or initialize) the cluster.
"""

from __future__ import annotations

import base64
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path

from google.cloud import compute_v1

from .errors import ActuatorError, invalid_machine_configuration
from .machine_setup import SetupMetadata
from .models import Cluster, GCEClusterProviderConfig, Machine

logger = logging.getLogger(__name__)

STARTUP_SCRIPT_KEY = "startup-script"
CA_CERT_KEY = "ca-cert"
CA_KEY_KEY = "ca-key"

MASTER_SERVICE_ACCOUNT_ANNOTATION = "gce.clusterapi.k8s.io/service-account-email-master"
WORKER_SERVICE_ACCOUNT_ANNOTATION = "gce.clusterapi.k8s.io/service-account-email-worker"
DEFAULT_SERVICE_ACCOUNT = "default"


@dataclass(frozen=True)
class CertificateAuthority:
    """CA material handed to the first master through instance metadata."""

    certificate: bytes
    private_key: bytes

    @classmethod
    def from_dir(cls, ca_dir: Path) -> CertificateAuthority:
        """Read ``ca.crt`` and ``ca.key`` from a directory.

        Raises:
            ActuatorError: If either file cannot be read.
        """
        try:
            return cls(
                certificate=(ca_dir / "ca.crt").read_bytes(),
                private_key=(ca_dir / "ca.key").read_bytes(),
            )
        except OSError as e:
            raise ActuatorError(f"Failed to read certificate authority from {ca_dir}: {e}") from e


def service_account_for(cluster: Cluster, machine: Machine) -> str:
    """Service account email the machine's instance runs as."""
    key = MASTER_SERVICE_ACCOUNT_ANNOTATION if machine.is_master else WORKER_SERVICE_ACCOUNT_ANNOTATION
    return cluster.metadata.annotations.get(key) or DEFAULT_SERVICE_ACCOUNT


def _prelude(env: dict[str, str]) -> str:
    lines = ["#!/bin/bash", "set -e"]
    lines += [f"{key}={shlex.quote(value)}" for key, value in env.items()]
    return "\n".join(lines) + "\n"


def _startup_script(env: dict[str, str], setup: SetupMetadata) -> str:
    script = setup.startup_script
    # The catalog script carries its own shebang; the prelude supplies one.
    if script.startswith("#!"):
        script = script.split("\n", 1)[1] if "\n" in script else ""
    return _prelude(env) + script


class MetadataBuilder:
    """Builds GCE instance metadata for master and node machines."""

    def __init__(
        self,
        kubeadm_token: str = "",
        certificate_authority: CertificateAuthority | None = None,
    ) -> None:
        self._token = kubeadm_token
        self._ca = certificate_authority

    def _cluster_env(
        self, cluster: Cluster, machine: Machine, cluster_config: GCEClusterProviderConfig
    ) -> dict[str, str]:
        network = cluster.spec.cluster_network
        return {
            "KUBEADM_TOKEN": self._token,
            "KUBELET_VERSION": machine.spec.versions.kubelet,
            "CLUSTER_NAME": cluster.name,
            "PROJECT": cluster_config.project,
            "MACHINE": machine.name,
            "POD_CIDR": network.pods.first,
            "SERVICE_CIDR": network.services.first,
            "SERVICE_DOMAIN": network.service_domain,
        }

    def build(
        self,
        cluster: Cluster,
        machine: Machine,
        cluster_config: GCEClusterProviderConfig,
        setup: SetupMetadata,
    ) -> compute_v1.Metadata:
        """Build the metadata for a new instance.

        Raises:
            MachineError: If a master has no control-plane version.
            ActuatorError: If a node is created before the cluster has an API endpoint.
        """
        env = self._cluster_env(cluster, machine, cluster_config)
        items: dict[str, str] = {}

        if machine.is_master:
            if not machine.spec.versions.control_plane:
                raise invalid_machine_configuration(
                    "invalid master configuration: missing Machine.Spec.Versions.ControlPlane"
                )
            env["CONTROL_PLANE_VERSION"] = machine.spec.versions.control_plane
            if self._ca is not None:
                items[CA_CERT_KEY] = base64.b64encode(self._ca.certificate).decode("ascii")
                items[CA_KEY_KEY] = base64.b64encode(self._ca.private_key).decode("ascii")
        else:
            if not cluster.status.api_endpoints:
                raise ActuatorError(
                    "invalid cluster state: cannot create a Kubernetes node without an API endpoint"
                )
            endpoint = cluster.status.api_endpoints[0]
            env["MASTER"] = f"{endpoint.host}:{endpoint.port}"

        items[STARTUP_SCRIPT_KEY] = _startup_script(env, setup)

        return compute_v1.Metadata(
            items=[compute_v1.Items(key=key, value=value) for key, value in sorted(items.items())]
        )
