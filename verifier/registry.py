from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from verifier.config import Settings
from verifier.models import Ports, RunConfig, SshConfig, Suite

logger = logging.getLogger(__name__)


def load_suite(path: Path | str | None) -> Suite:
    """
    Load the verification suite from YAML. A missing file yields the
    built-in suite; a present but invalid file is an error.
    """
    if path is None:
        return Suite()

    path = Path(path)
    if not path.exists():
        logger.info("No suite file at %s, using built-in checks", path)
        return Suite()

    data = yaml.safe_load(path.read_text()) or {}
    suite = Suite.model_validate(data)

    # Ensure unique names
    seen = set()
    for name in [h.name for h in suite.health] + [s.name for s in suite.smoke]:
        if name in seen:
            raise ValueError(f"Duplicate check name: {name}")
        seen.add(name)

    return suite


def _services(suite: Suite) -> set[str]:
    services = {h.service for h in suite.health}
    services.update(s.probe.service for s in suite.smoke)
    for pattern in (suite.retry, suite.circuit_breaker, suite.rate_limit, suite.cache):
        if pattern.enabled:
            services.add(pattern.probe.service)
    if suite.logs.enabled and suite.logs.traces_probe is not None:
        services.add(suite.logs.traces_probe.service)
    return services


def apply_defaults(suite: Suite, settings: Settings) -> Suite:
    """
    Fill per-check values the suite leaves unset from the environment.
    """
    health = [
        h.model_copy(update={"timeout_s": h.timeout_s or settings.HEALTH_CHECK_TIMEOUT})
        for h in suite.health
    ]
    retry = suite.retry.model_copy(
        update={"max_attempts": suite.retry.max_attempts or settings.RETRY_MAX_ATTEMPTS}
    )
    return suite.model_copy(update={"health": health, "retry": retry})


def build_run_config(
    settings: Settings,
    suite: Suite,
    **overrides: Any,
) -> RunConfig:
    """
    Produce the immutable run configuration. Keyword overrides (CLI flags)
    win over environment settings when they are not None.
    """
    ports = Ports(
        frontend=settings.FRONTEND_PORT,
        auth_api=settings.AUTH_API_PORT,
        todos_api=settings.TODOS_API_PORT,
        users_api=settings.USERS_API_PORT,
        zipkin=settings.ZIPKIN_PORT,
    )
    suite = apply_defaults(suite, settings)

    missing = sorted(s for s in _services(suite) if s not in Ports.model_fields)
    if missing:
        raise ValueError(f"Unknown service(s) in suite: {', '.join(missing)}")

    values: dict[str, Any] = {
        "test_level": settings.TEST_LEVEL,
        "ports": ports,
        "ssh": SshConfig(
            user=settings.SSH_USER,
            key_path=settings.SSH_KEY_PATH,
            port=settings.SSH_PORT,
            connect_timeout_s=settings.SSH_CONNECT_TIMEOUT,
        ),
        "health_timeout_s": settings.HEALTH_CHECK_TIMEOUT,
        "poll_interval_s": settings.HEALTH_CHECK_INTERVAL,
        "run_timeout_s": settings.RUN_TIMEOUT,
        "report_path": settings.REPORT_PATH,
        "logs_dir": settings.LOGS_DIR,
        "suite": suite,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return RunConfig.model_validate(values)
