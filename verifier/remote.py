from __future__ import annotations

import logging
import socket
from typing import Callable

import paramiko

from verifier.checks.results import CommandResult
from verifier.errors import UnreachableHostError
from verifier.models import SshConfig

logger = logging.getLogger(__name__)


class RemoteSession:
    """
    A single SSH session to the target host. Sessions are cheap to open and
    are never shared between workers; open one per unit of work.
    """

    def __init__(self, host: str, ssh: SshConfig) -> None:
        self.host = host
        self.ssh = ssh
        self._client: paramiko.SSHClient | None = None

    def open(self) -> RemoteSession:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs = {
            "port": self.ssh.port,
            "username": self.ssh.user,
            "timeout": self.ssh.connect_timeout_s,
            "auth_timeout": self.ssh.connect_timeout_s,
            "banner_timeout": self.ssh.connect_timeout_s,
            "allow_agent": True,
            "look_for_keys": True,
        }
        if self.ssh.key_path:
            connect_kwargs["key_filename"] = self.ssh.key_path

        logger.debug("Connecting to %s@%s:%s", self.ssh.user, self.host, self.ssh.port)
        try:
            client.connect(self.host, **connect_kwargs)
        except paramiko.AuthenticationException as exc:
            client.close()
            raise UnreachableHostError(
                f"SSH authentication failed for {self.ssh.user}@{self.host}: {exc}"
            ) from exc
        except (paramiko.SSHException, socket.timeout, OSError) as exc:
            client.close()
            raise UnreachableHostError(
                f"SSH connection to {self.host}:{self.ssh.port} failed: {exc}"
            ) from exc

        self._client = client
        return self

    def run(self, command: str, timeout_s: float = 60) -> CommandResult:
        if self._client is None:
            raise RuntimeError("Remote session is not open")

        logger.debug("Executing on %s: %s", self.host, command)
        try:
            _, stdout, stderr = self._client.exec_command(command, timeout=timeout_s)
            channel = stdout.channel
            channel.settimeout(timeout_s)
            # recv_exit_status() blocks without a timeout
            if not channel.status_event.wait(timeout_s):
                channel.close()
                raise socket.timeout()
            exit_status = channel.recv_exit_status()
            out = stdout.read().decode("utf-8", errors="replace").strip()
            err = stderr.read().decode("utf-8", errors="replace").strip()
        except socket.timeout:
            logger.error("Command timed out after %ss on %s: %s", timeout_s, self.host, command)
            return CommandResult(
                command=command,
                exit_status=-1,
                stderr=f"Command timed out after {timeout_s} seconds",
            )
        except paramiko.SSHException as exc:
            logger.error("SSH error on %s: %s", self.host, exc)
            return CommandResult(command=command, exit_status=-1, stderr=f"SSH error: {exc}")

        logger.debug("Command completed with exit code %d", exit_status)
        return CommandResult(command=command, exit_status=exit_status, stdout=out, stderr=err)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> RemoteSession:
        if self._client is None:
            self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


RemoteFactory = Callable[[], RemoteSession]


def session_factory(host: str, ssh: SshConfig) -> RemoteFactory:
    def factory() -> RemoteSession:
        return RemoteSession(host, ssh)

    return factory
