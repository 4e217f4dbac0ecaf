"""Update decisions and in-place control-plane upgrades.

Worker machines are stateless and replaced on any meaningful change.
Masters carry cluster state, so version changes are applied in place over
remote commands instead.
"""

from __future__ import annotations

import logging

from .errors import RemoteCommandError
from .identity import InstanceIdentity
from .models import Machine
from .remote import RemoteCommandRunner

logger = logging.getLogger(__name__)

ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
KUBEADM_DOWNLOAD_URL = "https://dl.k8s.io/release/v{version}/bin/linux/amd64/kubeadm"
KUBELET_PACKAGE_REVISION = "00"


def requires_update(current: Machine, goal: Machine) -> bool:
    """Check whether two machines differ in a way that requires provider action.

    Only fields that impact provisioning are compared; status is an output of
    reconciliation and must never trigger an update on its own.
    """
    return (
        current.spec.object_meta != goal.spec.object_meta
        or current.spec.provider_config != goal.spec.provider_config
        or current.spec.roles != goal.spec.roles
        or current.spec.versions != goal.spec.versions
        or current.name != goal.name
    )


class MasterUpgrader:
    """Applies control-plane and kubelet version changes to a running master."""

    def __init__(self, runner: RemoteCommandRunner) -> None:
        self._runner = runner

    def upgrade(self, target: InstanceIdentity, old: Machine, new: Machine) -> None:
        """Upgrade the master in place.

        Kubelet upgrades drain the node, reinstall the pinned kubelet and
        uncordon. Drain errors are ignored since masters run static pods that
        cannot be evicted; the reinstall still runs so versions do not drift.

        Args:
            target: Instance to run the commands on.
            old: Machine describing the currently installed versions.
            new: Machine describing the goal versions.

        Raises:
            RemoteCommandError: If an install, upgrade or uncordon command fails.
        """
        new_cp = new.spec.versions.control_plane
        if old.spec.versions.control_plane != new_cp:
            logger.info(
                "Upgrading control plane",
                extra={"machine": new.name, "from": old.spec.versions.control_plane, "to": new_cp},
            )
            url = KUBEADM_DOWNLOAD_URL.format(version=new_cp)
            self._run(
                target,
                f"curl -sSL {url} | sudo tee /usr/bin/kubeadm > /dev/null; "
                "sudo chmod a+rx /usr/bin/kubeadm",
            )
            self._run(target, f"sudo kubeadm upgrade apply v{new_cp} -y")

        new_kubelet = new.spec.versions.kubelet
        if old.spec.versions.kubelet != new_kubelet:
            logger.info(
                "Upgrading kubelet",
                extra={"machine": new.name, "from": old.spec.versions.kubelet, "to": new_kubelet},
            )
            try:
                self._runner.run(
                    target,
                    f"sudo kubectl drain {new.name} --kubeconfig {ADMIN_KUBECONFIG} "
                    "--ignore-daemonsets",
                )
            except RemoteCommandError as e:
                logger.info("Ignoring drain failure", extra={"machine": new.name, "error": str(e)})

            self._run(
                target,
                f"sudo apt-get install kubelet={new_kubelet}-{KUBELET_PACKAGE_REVISION}",
            )
            self._run(target, f"sudo kubectl uncordon {new.name} --kubeconfig {ADMIN_KUBECONFIG}")

    def _run(self, target: InstanceIdentity, command: str) -> str:
        try:
            return self._runner.run(target, command)
        except RemoteCommandError as e:
            logger.info("Remote command error", extra={"target": target.name, "error": str(e)})
            raise
