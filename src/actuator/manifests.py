"""Machine and Cluster manifest loading, and the Machine record client.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Protocol, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .config import MAX_MANIFEST_FILE_SIZE_BYTES
from .models import Cluster, Machine

logger = logging.getLogger(__name__)

API_VERSION = "cluster.k8s.io/v1alpha1"

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class ManifestLoadError(Exception):
    """Raised when manifest loading or validation fails."""

    pass


class MachineClient(Protocol):
    """Persists Machine objects and their status."""

    def update(self, machine: Machine) -> Machine: ...

    def update_status(self, machine: Machine) -> Machine: ...


def _read_manifest(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ManifestLoadError(f"Manifest file not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ManifestLoadError(f"Failed to stat manifest file {path}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise ManifestLoadError(
            f"Manifest file exceeds maximum size of {MAX_MANIFEST_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestLoadError(f"Failed to read manifest file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ManifestLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise ManifestLoadError(f"Manifest file must contain a YAML mapping: {path}")

    return raw_data


def _load(path: Path, kind: str, model: type[_ModelT]) -> _ModelT:
    raw_data = _read_manifest(path)

    data_kind = raw_data.get("kind")
    if data_kind is not None and data_kind != kind:
        raise ManifestLoadError(f"Expected kind {kind} in {path}, found {data_kind}")

    try:
        obj = model.model_validate(raw_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise ManifestLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info("Loaded %s manifest from %s", kind, path)
    return obj


def load_machine(path: Path) -> Machine:
    """Load and validate a Machine manifest.

    Raises:
        ManifestLoadError: If the manifest cannot be loaded or fails validation.
    """
    return _load(path, "Machine", Machine)


def load_cluster(path: Path) -> Cluster:
    """Load and validate a Cluster manifest.

    Raises:
        ManifestLoadError: If the manifest cannot be loaded or fails validation.
    """
    return _load(path, "Cluster", Cluster)


def dump_machine(machine: Machine) -> str:
    """Serialize a Machine into a manifest."""
    data: dict[str, Any] = {"apiVersion": API_VERSION, "kind": "Machine"}
    data.update(machine.model_dump(mode="json", by_alias=True, exclude_none=True))
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


class FileMachineClient:
    """MachineClient that writes the Machine back to its manifest file.

    Spec and status are written together; the file is replaced atomically so
    a crash never leaves a truncated manifest behind.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, machine: Machine) -> Machine:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            tmp_path.write_text(dump_machine(machine), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise ManifestLoadError(f"Failed to write manifest file {self._path}: {e}") from e
        return machine

    def update(self, machine: Machine) -> Machine:
        logger.debug("Persisting machine", extra={"machine": machine.name, "path": str(self._path)})
        return self._write(machine)

    def update_status(self, machine: Machine) -> Machine:
        logger.debug(
            "Persisting machine status", extra={"machine": machine.name, "path": str(self._path)}
        )
        return self._write(machine)
