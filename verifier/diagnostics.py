from __future__ import annotations

import json
import logging
import re
import shlex
from pathlib import Path

import paramiko

from verifier.checks.http_check import run_http
from verifier.checks.results import PASS, CheckResult
from verifier.deadline import Deadline
from verifier.errors import CheckFailed, VerificationError
from verifier.models import LogsSettings, Target
from verifier.remote import RemoteFactory

logger = logging.getLogger(__name__)

MAX_MATCHES_IN_DETAIL = 3


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", name)


def find_errors(text: str, patterns: list[str]) -> list[str]:
    compiled = [re.compile(p, re.IGNORECASE) for p in patterns]
    return [line for line in text.splitlines() if any(p.search(line) for p in compiled)]


def inspect_container_logs(
    container: str,
    cfg: LogsSettings,
    remote_factory: RemoteFactory,
    logs_dir: Path | str,
    deadline: Deadline,
) -> CheckResult:
    """Tail one container's logs, keep a copy, and fail on error lines."""
    command = f"docker logs --tail {cfg.tail} {shlex.quote(container)} 2>&1"
    with remote_factory() as session:
        res = session.run(command, timeout_s=max(deadline.clip(cfg.command_timeout_s), 1.0))

    out_dir = Path(logs_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / f"{_safe_name(container)}.log").write_text(res.stdout + "\n")

    if not res.ok:
        raise CheckFailed(f"`{command}` exited with {res.exit_status}: {res.stderr or res.stdout}")

    matches = find_errors(res.stdout, cfg.error_patterns)
    if matches:
        sample = " | ".join(m.strip()[:160] for m in matches[:MAX_MATCHES_IN_DETAIL])
        raise CheckFailed(f"{len(matches)} error line(s) in last {cfg.tail}: {sample}")

    return CheckResult(
        name=f"logs:{container}",
        status=PASS,
        detail=f"no error lines in last {cfg.tail}",
    )


def inspect_traces(cfg: LogsSettings, target: Target, deadline: Deadline) -> CheckResult:
    """The tracing collector must know about at least one service."""
    probe = cfg.traces_probe
    url = target.url(probe.service, probe.path)
    res = run_http(url, timeout_s=max(deadline.clip(probe.timeout_s), 0.05))
    if not res.ok:
        raise CheckFailed(f"{url}: {res.error or f'HTTP {res.status_code}'}")
    try:
        services = json.loads(res.body)
    except ValueError as exc:
        raise CheckFailed(f"{url}: invalid JSON: {exc}") from exc
    if not isinstance(services, list) or not services:
        raise CheckFailed(f"{url}: no traced services reported")
    return CheckResult(
        name="traces",
        status=PASS,
        latency_ms=res.latency_ms,
        detail=f"{len(services)} traced service(s): {', '.join(map(str, services[:10]))}",
    )


def capture_emergency_diagnostics(
    remote_factory: RemoteFactory | None,
    containers: list[str],
    logs_dir: Path | str,
    tail: int = 200,
    timeout_s: float = 30,
) -> list[Path]:
    """
    Best effort: write a runtime status snapshot and recent container logs
    to the logs directory. Never raises for remote or filesystem failures.
    """
    if remote_factory is None:
        logger.warning("No remote channel, skipping emergency diagnostics")
        return []

    out_dir = Path(logs_dir) / "emergency"
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Cannot create diagnostics directory %s: %s", out_dir, exc)
        return []
    commands = [("docker-ps", "docker ps -a"), ("docker-stats", "docker stats --no-stream")]
    commands += [
        (f"logs-{_safe_name(c)}", f"docker logs --tail {tail} {shlex.quote(c)} 2>&1")
        for c in containers
    ]

    written: list[Path] = []
    try:
        with remote_factory() as session:
            for name, command in commands:
                try:
                    res = session.run(command, timeout_s=timeout_s)
                    path = out_dir / f"{name}.txt"
                    path.write_text(
                        f"$ {command}\n# exit {res.exit_status}\n{res.stdout}\n{res.stderr}\n"
                    )
                except (OSError, paramiko.SSHException) as exc:
                    logger.warning("Diagnostic `%s` not captured: %s", command, exc)
                    continue
                written.append(path)
    except VerificationError as exc:
        logger.warning("Emergency diagnostics incomplete: %s", exc)

    logger.info("Captured %d diagnostic file(s) in %s", len(written), out_dir)
    return written
