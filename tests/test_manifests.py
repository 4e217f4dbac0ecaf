"""Tests for manifest loading and the file-backed Machine client."""

from pathlib import Path

import pytest
import yaml

from actuator.codec import ProviderConfigCodec
from actuator.config import MAX_MANIFEST_FILE_SIZE_BYTES
from actuator.identity import InstanceIdentity, observe
from actuator.manifests import (
    FileMachineClient,
    ManifestLoadError,
    dump_machine,
    load_cluster,
    load_machine,
)
from gce_mock.factories import PROJECT, ZONE, make_machine

MACHINE_MANIFEST = """
apiVersion: cluster.k8s.io/v1alpha1
kind: Machine
metadata:
  name: worker-1
  finalizers: [machine.cluster.k8s.io]
spec:
  providerConfig:
    value:
      apiVersion: gceproviderconfig/v1alpha1
      kind: GCEMachineProviderConfig
      zone: us-central1-f
      machineType: n1-standard-1
      os: ubuntu-1710
  roles: [Node]
  versions:
    kubelet: 1.9.4
"""

CLUSTER_MANIFEST = """
apiVersion: cluster.k8s.io/v1alpha1
kind: Cluster
metadata:
  name: test-cluster
spec:
  clusterNetwork:
    services:
      cidrBlocks: [10.96.0.0/12]
    pods:
      cidrBlocks: [192.168.0.0/16]
    serviceDomain: cluster.local
  providerConfig:
    value:
      apiVersion: gceproviderconfig/v1alpha1
      kind: GCEClusterProviderConfig
      project: my-project
status:
  apiEndpoints:
  - host: 10.0.0.2
    port: 443
"""


class TestLoadManifests:
    """Tests for loading Machine and Cluster manifests."""

    def test_load_machine(self, tmp_path: Path) -> None:
        """Test loading a Machine whose provider config decodes."""
        path = tmp_path / "machine.yaml"
        path.write_text(MACHINE_MANIFEST)

        machine = load_machine(path)

        assert machine.name == "worker-1"
        assert ProviderConfigCodec().decode_machine(machine.spec.provider_config).zone == ZONE

    def test_load_cluster(self, tmp_path: Path) -> None:
        """Test loading a Cluster with an API endpoint."""
        path = tmp_path / "cluster.yaml"
        path.write_text(CLUSTER_MANIFEST)

        cluster = load_cluster(path)

        assert cluster.name == "test-cluster"
        assert cluster.status.api_endpoints[0].host == "10.0.0.2"
        assert cluster.spec.cluster_network.pods.first == "192.168.0.0/16"

    def test_kind_mismatch(self, tmp_path: Path) -> None:
        """Test that a Cluster manifest cannot be loaded as a Machine."""
        path = tmp_path / "cluster.yaml"
        path.write_text(CLUSTER_MANIFEST)

        with pytest.raises(ManifestLoadError) as exc_info:
            load_machine(path)

        assert "Expected kind Machine" in str(exc_info.value)

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test that a missing manifest is reported."""
        with pytest.raises(ManifestLoadError) as exc_info:
            load_machine(tmp_path / "missing.yaml")

        assert "not found" in str(exc_info.value)

    def test_oversized_file(self, tmp_path: Path) -> None:
        """Test that oversized manifests are rejected before parsing."""
        path = tmp_path / "machine.yaml"
        path.write_text("#" * (MAX_MANIFEST_FILE_SIZE_BYTES + 1))

        with pytest.raises(ManifestLoadError) as exc_info:
            load_machine(path)

        assert "maximum size" in str(exc_info.value)

    def test_validation_error(self, tmp_path: Path) -> None:
        """Test that schema errors are listed by location."""
        path = tmp_path / "machine.yaml"
        path.write_text("kind: Machine\nspec:\n  roles: [Etcd]\n")

        with pytest.raises(ManifestLoadError) as exc_info:
            load_machine(path)

        assert "spec.roles.0" in str(exc_info.value)


class TestFileMachineClient:
    """Tests for persisting Machines back to their manifest."""

    def test_update_status_round_trip(self, tmp_path: Path) -> None:
        """Test that persisted annotations and status load back."""
        path = tmp_path / "machine.yaml"
        path.write_text(MACHINE_MANIFEST)
        machine = load_machine(path)
        machine.metadata.annotations["gcp-zone"] = ZONE
        machine.status.provider_status = observe(
            machine, InstanceIdentity(PROJECT, ZONE, "worker-1")
        )

        FileMachineClient(path).update_status(machine)

        reloaded = load_machine(path)
        assert reloaded.metadata.annotations == {"gcp-zone": ZONE}
        assert reloaded.status.provider_status == machine.status.provider_status
        assert not (tmp_path / "machine.yaml.tmp").exists()

    def test_dump_machine_is_a_manifest(self) -> None:
        """Test that dumped Machines carry apiVersion and kind."""
        data = yaml.safe_load(dump_machine(make_machine()))

        assert data["apiVersion"] == "cluster.k8s.io/v1alpha1"
        assert data["kind"] == "Machine"
        assert data["spec"]["versions"]["kubelet"] == "1.9.4"
