"""Machine setup catalog.

The catalog maps an (OS, roles, versions) selector to the image and the
startup script used to turn a fresh VM into a cluster node. It is published
to the machine controller as a ConfigMap entry and read back from a file.

Example catalog::

    items:
    - machineParams:
      - os: ubuntu-1710
        roles: [Master]
        versions:
          kubelet: 1.9.4
          controlPlane: 1.9.4
      image: projects/ubuntu-os-cloud/global/images/family/ubuntu-1710
      metadata:
        startupScript: |
          #!/bin/bash
          ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import yaml
from pydantic import BaseModel, Field, ValidationError

from .config import MAX_SETUP_CONFIG_FILE_SIZE_BYTES
from .errors import ActuatorError
from .models import MachineRole, MachineVersionInfo

logger = logging.getLogger(__name__)

# ConfigMap key the catalog is published under
MACHINE_SETUP_CONFIGS_FILENAME = "machine_setup_configs.yaml"


class MachineSetupError(ActuatorError):
    """Raised when the catalog cannot be loaded or has no matching entry."""

    pass


@dataclass(frozen=True)
class ConfigParams:
    """Selector for a catalog entry."""

    os: str
    roles: tuple[MachineRole, ...]
    versions: MachineVersionInfo

    def __str__(self) -> str:
        roles = ",".join(r.value for r in self.roles)
        return (
            f"os={self.os} roles=[{roles}] kubelet={self.versions.kubelet} "
            f"controlPlane={self.versions.control_plane}"
        )


class MachineParams(BaseModel):
    """One selector an entry applies to."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    os: str
    roles: list[MachineRole] = Field(default_factory=list)
    versions: MachineVersionInfo = Field(default_factory=MachineVersionInfo)

    def matches(self, params: ConfigParams) -> bool:
        return (
            self.os == params.os
            and set(self.roles) == set(params.roles)
            and self.versions == params.versions
        )


class SetupMetadata(BaseModel):
    """Instance metadata contributed by a catalog entry."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    startup_script: str = Field("", alias="startupScript")


class MachineSetupEntry(BaseModel):
    """Image and metadata for a set of machine selectors."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    machine_params: list[MachineParams] = Field(default_factory=list, alias="machineParams")
    image: str
    metadata: SetupMetadata = Field(default_factory=SetupMetadata)


class MachineSetupConfig(BaseModel):
    """The full catalog."""

    model_config = {"extra": "ignore"}

    items: list[MachineSetupEntry] = Field(default_factory=list)

    def _match(self, params: ConfigParams) -> MachineSetupEntry:
        matched = [item for item in self.items if any(p.matches(params) for p in item.machine_params)]
        if not matched:
            raise MachineSetupError(f"could not find a matching machine setup config for {params}")
        if len(matched) > 1:
            raise MachineSetupError(f"found multiple matching machine setup configs for {params}")
        return matched[0]

    def get_image(self, params: ConfigParams) -> str:
        """Image reference for the selector.

        Raises:
            MachineSetupError: If zero or several entries match.
        """
        return self._match(params).image

    def get_metadata(self, params: ConfigParams) -> SetupMetadata:
        """Metadata for the selector.

        Raises:
            MachineSetupError: If zero or several entries match.
        """
        return self._match(params).metadata

    def get_yaml(self) -> str:
        """Serialize the catalog for publishing."""
        return yaml.safe_dump(
            self.model_dump(mode="json", by_alias=True), sort_keys=False, default_flow_style=False
        )

    @classmethod
    def from_yaml(cls, content: str, source: str = "<string>") -> MachineSetupConfig:
        """Parse and validate a catalog.

        Raises:
            MachineSetupError: If the content is not a valid catalog.
        """
        try:
            raw = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise MachineSetupError(f"Invalid YAML in {source}: {e}") from e

        if not isinstance(raw, dict):
            raise MachineSetupError(f"Machine setup config must be a YAML mapping: {source}")

        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                errors.append(f"  - {loc}: {error['msg']}")
            error_list = "\n".join(errors)
            raise MachineSetupError(f"Validation failed for {source}:\n{error_list}") from e


class MachineSetupConfigGetter(Protocol):
    """Supplies the current machine setup catalog."""

    def get_machine_setup_config(self) -> MachineSetupConfig: ...


class FileMachineSetupConfigGetter:
    """Reads the catalog from a file on every call.

    The file is usually a mounted ConfigMap, so it is re-read each time to
    pick up changes without restarting the controller.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def get_machine_setup_config(self) -> MachineSetupConfig:
        """Load the catalog.

        Raises:
            MachineSetupError: If the file is missing, too large or invalid.
        """
        try:
            file_size = self._path.stat().st_size
        except OSError as e:
            raise MachineSetupError(f"Failed to stat machine setup config {self._path}: {e}") from e

        if file_size > MAX_SETUP_CONFIG_FILE_SIZE_BYTES:
            raise MachineSetupError(
                f"Machine setup config exceeds maximum size of "
                f"{MAX_SETUP_CONFIG_FILE_SIZE_BYTES} bytes: {self._path}"
            )

        try:
            content = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise MachineSetupError(f"Failed to read machine setup config {self._path}: {e}") from e

        config = MachineSetupConfig.from_yaml(content, source=str(self._path))
        logger.debug(
            "Loaded machine setup config",
            extra={"path": str(self._path), "entries": len(config.items)},
        )
        return config
