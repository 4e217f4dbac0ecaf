"""Provider-config codec.

Decodes the opaque ``providerConfig`` blobs attached to Machines and Clusters
into strongly typed GCE configs. Decode failures are permanent configuration
errors: retrying a reconcile with the same blob can never succeed.
"""

from __future__ import annotations

from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .errors import ActuatorError
from .models import GCEClusterProviderConfig, GCEMachineProviderConfig, ProviderConfig

API_VERSION = "gceproviderconfig/v1alpha1"
MACHINE_KIND = "GCEMachineProviderConfig"
CLUSTER_KIND = "GCEClusterProviderConfig"

_ConfigT = TypeVar("_ConfigT", bound=BaseModel)


class ProviderConfigDecodeError(ActuatorError):
    """Raised when a provider-config blob cannot be decoded."""

    pass


class ProviderConfigCodec:
    """Encodes and decodes versioned GCE provider configs."""

    def __init__(self, api_version: str = API_VERSION) -> None:
        self._api_version = api_version

    def decode_machine(self, provider_config: ProviderConfig) -> GCEMachineProviderConfig:
        """Decode a Machine's provider config.

        Raises:
            ProviderConfigDecodeError: If the blob is missing, malformed or invalid.
        """
        return self._decode(provider_config, MACHINE_KIND, GCEMachineProviderConfig)

    def decode_cluster(self, provider_config: ProviderConfig) -> GCEClusterProviderConfig:
        """Decode a Cluster's provider config.

        Raises:
            ProviderConfigDecodeError: If the blob is missing, malformed or invalid.
        """
        return self._decode(provider_config, CLUSTER_KIND, GCEClusterProviderConfig)

    def encode(self, config: GCEMachineProviderConfig | GCEClusterProviderConfig) -> ProviderConfig:
        """Wrap a typed config into a versioned provider-config blob."""
        kind = MACHINE_KIND if isinstance(config, GCEMachineProviderConfig) else CLUSTER_KIND
        value: dict[str, Any] = {"apiVersion": self._api_version, "kind": kind}
        value.update(config.model_dump(by_alias=True, exclude_none=True))
        return ProviderConfig(value=value)

    def _decode(
        self, provider_config: ProviderConfig, kind: str, model: type[_ConfigT]
    ) -> _ConfigT:
        raw = provider_config.value
        if raw is None:
            raise ProviderConfigDecodeError(f"{kind}: providerConfig value is empty")

        if isinstance(raw, str):
            try:
                raw = yaml.safe_load(raw)
            except yaml.YAMLError as e:
                raise ProviderConfigDecodeError(f"{kind}: invalid YAML: {e}") from e

        if not isinstance(raw, dict):
            raise ProviderConfigDecodeError(f"{kind}: providerConfig must be a mapping")

        data = dict(raw)
        api_version = data.pop("apiVersion", None)
        data_kind = data.pop("kind", None)

        if api_version is not None and api_version != self._api_version:
            raise ProviderConfigDecodeError(
                f"{kind}: unsupported apiVersion {api_version!r}, expected {self._api_version!r}"
            )
        if data_kind is not None and data_kind != kind:
            raise ProviderConfigDecodeError(f"{kind}: unexpected kind {data_kind!r}")

        try:
            return model.model_validate(data)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                errors.append(f"{loc}: {error['msg']}")
            raise ProviderConfigDecodeError(f"{kind}: {'; '.join(errors)}") from e
