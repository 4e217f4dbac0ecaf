"""Configuration management with validation.

Reconciliation defaults (fallback image, operation timeout, poll interval,
boot disk floor) are named constants injected into the actuator through
``ActuatorConfig`` rather than read from module globals at call time, so
tests can override them per instance.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_IMAGE_PATH = "projects/ubuntu-os-cloud/global/images/family/ubuntu-1710"

DEFAULT_OPERATION_TIMEOUT_SECONDS = 600  # 10 minutes
MIN_OPERATION_TIMEOUT_SECONDS = 30
MAX_OPERATION_TIMEOUT_SECONDS = 3600

DEFAULT_OPERATION_POLL_INTERVAL_SECONDS = 5

DEFAULT_MIN_BOOT_DISK_SIZE_GB = 30
MAX_BOOT_DISK_SIZE_GB = 65536  # GCE persistent disk limit

DEFAULT_SSH_KEYS_DIR = "/etc/sshkeys"

# File size limits for manifests and catalogs read from disk
MAX_MANIFEST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB
MAX_SETUP_CONFIG_FILE_SIZE_BYTES = 4 * 1024 * 1024  # 4MB

# Remote command execution
REMOTE_COMMAND_TIMEOUT_SECONDS = 900

IMAGE_PATH_PREFIX = "projects/"


@dataclass(frozen=True)
class SshCredentials:
    """SSH credentials for remote command execution on machines.

    Only populated when running inside the machine controller pod, where
    the key material is mounted under ``/etc/sshkeys``.
    """

    user: str = ""
    private_key_path: Path | None = None

    @property
    def configured(self) -> bool:
        return bool(self.user) and self.private_key_path is not None

    @classmethod
    def from_dir(cls, keys_dir: Path) -> SshCredentials:
        """Load credentials from a mounted key directory.

        Args:
            keys_dir: Directory holding ``private`` and ``user`` files.

        Returns:
            Credentials, empty when no private key is mounted.

        Raises:
            ConfigurationError: If the private key exists but the user file
                cannot be read.
        """
        private_key = keys_dir / "private"
        if not private_key.exists():
            return cls()

        try:
            user = (keys_dir / "user").read_text(encoding="utf-8").strip()
        except OSError as e:
            raise ConfigurationError(f"Failed to read SSH user from {keys_dir}: {e}") from e

        return cls(user=user, private_key_path=private_key)


@dataclass(frozen=True)
class ActuatorConfig:
    """Actuator configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-reconcile.
    """

    default_image_path: str = DEFAULT_IMAGE_PATH
    operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS
    operation_poll_interval_seconds: float = DEFAULT_OPERATION_POLL_INTERVAL_SECONDS
    min_boot_disk_size_gb: int = DEFAULT_MIN_BOOT_DISK_SIZE_GB

    # Collaborator inputs
    machine_setup_config_path: Path | None = None
    ca_dir: Path | None = None
    kubeadm_token: str = ""
    ssh: SshCredentials = field(default_factory=SshCredentials)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.default_image_path.startswith(IMAGE_PATH_PREFIX):
            errors.append(
                f"GCE_DEFAULT_IMAGE must be a full image path starting with "
                f"'{IMAGE_PATH_PREFIX}': {self.default_image_path}"
            )

        if not (
            MIN_OPERATION_TIMEOUT_SECONDS
            <= self.operation_timeout_seconds
            <= MAX_OPERATION_TIMEOUT_SECONDS
        ):
            errors.append(
                f"GCE_OPERATION_TIMEOUT must be between {MIN_OPERATION_TIMEOUT_SECONDS} "
                f"and {MAX_OPERATION_TIMEOUT_SECONDS} seconds"
            )

        if self.operation_poll_interval_seconds <= 0:
            errors.append("GCE_OPERATION_POLL_INTERVAL must be positive")
        elif self.operation_poll_interval_seconds >= self.operation_timeout_seconds:
            errors.append("GCE_OPERATION_POLL_INTERVAL must be shorter than GCE_OPERATION_TIMEOUT")

        if not (1 <= self.min_boot_disk_size_gb <= MAX_BOOT_DISK_SIZE_GB):
            errors.append(
                f"GCE_MIN_BOOT_DISK_SIZE_GB must be between 1 and {MAX_BOOT_DISK_SIZE_GB}"
            )

        if self.machine_setup_config_path is not None and not self.machine_setup_config_path.exists():
            errors.append(
                f"Machine setup config file does not exist: {self.machine_setup_config_path}"
            )

        if self.ca_dir is not None and not self.ca_dir.is_dir():
            errors.append(f"CA directory does not exist: {self.ca_dir}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> ActuatorConfig:
        """Load configuration from environment variables.

        Environment Variables:
            GCE_DEFAULT_IMAGE: Fallback image path (default: ubuntu-1710 family)
            GCE_OPERATION_TIMEOUT: Seconds to wait for an operation (default: 600)
            GCE_OPERATION_POLL_INTERVAL: Seconds between operation polls (default: 5)
            GCE_MIN_BOOT_DISK_SIZE_GB: Boot disk size floor in GB (default: 30)
            MACHINE_SETUP_CONFIG_PATH: Machine setup catalog YAML (optional)
            CA_DIR: Directory with ca.crt and ca.key (optional)
            KUBEADM_TOKEN: Token baked into instance startup metadata
            SSH_KEYS_DIR: Directory with mounted SSH key material (default: /etc/sshkeys)
        """

        def get_number(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_path(key: str) -> Path | None:
            value = os.environ.get(key)
            return Path(value) if value else None

        return cls(
            default_image_path=os.environ.get("GCE_DEFAULT_IMAGE", DEFAULT_IMAGE_PATH),
            operation_timeout_seconds=get_number(
                "GCE_OPERATION_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            operation_poll_interval_seconds=get_number(
                "GCE_OPERATION_POLL_INTERVAL", DEFAULT_OPERATION_POLL_INTERVAL_SECONDS
            ),
            min_boot_disk_size_gb=int(
                get_number("GCE_MIN_BOOT_DISK_SIZE_GB", DEFAULT_MIN_BOOT_DISK_SIZE_GB)
            ),
            machine_setup_config_path=get_path("MACHINE_SETUP_CONFIG_PATH"),
            ca_dir=get_path("CA_DIR"),
            kubeadm_token=os.environ.get("KUBEADM_TOKEN", ""),
            ssh=SshCredentials.from_dir(Path(os.environ.get("SSH_KEYS_DIR", DEFAULT_SSH_KEYS_DIR))),
        )
