"""Remote command execution on machines.

Commands run over ``gcloud compute ssh`` so that instance lookup, key
propagation and host key handling are delegated to the gcloud CLI.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Protocol

from .config import REMOTE_COMMAND_TIMEOUT_SECONDS, SshCredentials
from .errors import RemoteCommandError
from .identity import InstanceIdentity

logger = logging.getLogger(__name__)


class RemoteCommandRunner(Protocol):
    """Executes a shell command on a machine and returns its stdout."""

    def run(self, target: InstanceIdentity, command: str) -> str: ...


class GcloudSshRunner:
    """RemoteCommandRunner backed by ``gcloud compute ssh``."""

    def __init__(
        self,
        credentials: SshCredentials | None = None,
        *,
        gcloud: str = "gcloud",
        timeout: int = REMOTE_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self._credentials = credentials or SshCredentials()
        self._gcloud = gcloud
        self._timeout = timeout

    def build_command(self, target: InstanceIdentity, command: str) -> list[str]:
        """Build the gcloud argument vector for a remote command."""
        host = target.name
        cmd = [self._gcloud, "compute", "ssh", "--project", target.project, "--zone", target.zone]
        if self._credentials.configured:
            host = f"{self._credentials.user}@{target.name}"
            cmd += ["--ssh-key-file", str(self._credentials.private_key_path)]
        cmd += [host, "--command", command, "--", "-q"]
        return cmd

    def run(self, target: InstanceIdentity, command: str) -> str:
        """Run a command on the target instance.

        Raises:
            RemoteCommandError: If gcloud is missing, cannot be started, times out
                or exits non-zero.
        """
        if shutil.which(self._gcloud) is None:
            raise RemoteCommandError(target.name, command, f"{self._gcloud} not found")

        logger.info("Running remote command", extra={"target": target.name, "command": command})
        try:
            result = subprocess.run(
                self.build_command(target, command),
                timeout=self._timeout,
                capture_output=True,
                text=True,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise RemoteCommandError(
                target.name, command, f"timed out after {self._timeout}s"
            ) from e
        except OSError as e:
            raise RemoteCommandError(target.name, command, f"failed to run {self._gcloud}: {e}") from e

        if result.returncode != 0:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise RemoteCommandError(target.name, command, detail)
        return result.stdout
