"""Runtime wiring for the GCE machine actuator.

Builds a ``GCEMachineActuator`` against the real Compute Engine API from an
``ActuatorConfig``:

- Compute Engine through Application Default Credentials
- Machine setup catalog from MACHINE_SETUP_CONFIG_PATH (re-read per call)
- Remote commands through ``gcloud compute ssh`` with the mounted SSH keys
- Cluster CA from CA_DIR for new masters
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from .actuator import GCEMachineActuator
from .compute import GoogleComputeService
from .config import ActuatorConfig
from .machine_setup import FileMachineSetupConfigGetter
from .manifests import MachineClient
from .metadata import CertificateAuthority
from .remote import GcloudSshRunner

# LogRecord attributes that are not user-supplied context
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure structured logging with JSON output on stdout."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if any(isinstance(h.formatter, JsonFormatter) for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from the Google client libraries
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_actuator(
    config: ActuatorConfig, machine_client: MachineClient | None = None
) -> GCEMachineActuator:
    """Create an actuator backed by the production collaborators.

    Args:
        config: Validated actuator configuration.
        machine_client: Persists Machine mutations; None runs in bootstrap mode.

    Raises:
        ActuatorError: If the configured CA directory cannot be read.
    """
    setup_getter = None
    if config.machine_setup_config_path is not None:
        setup_getter = FileMachineSetupConfigGetter(config.machine_setup_config_path)

    certificate_authority = None
    if config.ca_dir is not None:
        certificate_authority = CertificateAuthority.from_dir(config.ca_dir)

    return GCEMachineActuator(
        GoogleComputeService(),
        config=config,
        machine_client=machine_client,
        machine_setup_config_getter=setup_getter,
        remote_runner=GcloudSshRunner(config.ssh),
        certificate_authority=certificate_authority,
    )
