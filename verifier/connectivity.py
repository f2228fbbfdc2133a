from __future__ import annotations

import logging

from verifier.checks.results import PASS, CheckResult
from verifier.checks.tcp_check import run_tcp
from verifier.errors import RuntimeNotReadyError, UnreachableHostError
from verifier.models import RunConfig, Target
from verifier.remote import RemoteFactory

logger = logging.getLogger(__name__)

RUNTIME_COMMANDS = (
    ("runtime-version", "docker --version"),
    ("runtime-status", "docker info --format '{{.ServerVersion}}'"),
    ("runtime-containers", "docker ps --format '{{.Names}}: {{.Status}}'"),
)


def probe_connectivity(
    target: Target,
    config: RunConfig,
    remote_factory: RemoteFactory,
) -> list[CheckResult]:
    """
    Confirm the host is reachable over SSH and its container runtime is
    live. Raises UnreachableHostError or RuntimeNotReadyError; on success
    returns one PASS result per step.
    """
    results: list[CheckResult] = []

    tcp = run_tcp(target.host, config.ssh.port, timeout_s=config.ssh.connect_timeout_s)
    if not tcp.ok:
        raise UnreachableHostError(
            f"{target.host}:{config.ssh.port} not reachable: {tcp.error}"
        )
    results.append(
        CheckResult(
            name="ssh-port",
            status=PASS,
            latency_ms=tcp.latency_ms,
            detail=f"{target.host}:{config.ssh.port} accepts connections",
        )
    )

    with remote_factory() as session:
        results.append(
            CheckResult(name="ssh-session", status=PASS, detail=f"{config.ssh.user}@{target.host}")
        )
        for name, command in RUNTIME_COMMANDS:
            res = session.run(command, timeout_s=config.ssh.connect_timeout_s * 3)
            if not res.ok:
                raise RuntimeNotReadyError(
                    f"`{command}` exited with {res.exit_status}: {res.stderr or res.stdout}"
                )
            first_line = res.stdout.splitlines()[0] if res.stdout else ""
            results.append(CheckResult(name=name, status=PASS, detail=first_line))
            logger.info("%s ok: %s", name, first_line)

    return results
