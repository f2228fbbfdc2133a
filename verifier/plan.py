from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from typing import Callable

from verifier import diagnostics, patterns
from verifier.checks.http_check import expect_http, poll_until_healthy
from verifier.checks.results import CheckResult
from verifier.deadline import Deadline
from verifier.models import RunConfig, Target
from verifier.remote import RemoteFactory

ALL_LEVELS = frozenset({"FULL", "SMOKE_ONLY", "PATTERNS_ONLY"})


@dataclass(frozen=True)
class StageContext:
    config: RunConfig
    target: Target
    remote_factory: RemoteFactory | None = None


@dataclass(frozen=True)
class Job:
    name: str
    run: Callable[[Deadline], CheckResult]
    timeout_s: float


@dataclass(frozen=True)
class Stage:
    name: str
    levels: frozenset[str]
    build: Callable[[StageContext], list[Job]]
    required: bool = True
    parallel: bool = True
    description: str = field(default="", compare=False)

    def includes(self, test_level: str) -> bool:
        return test_level in self.levels


def _health_jobs(ctx: StageContext) -> list[Job]:
    cfg = ctx.config
    return [
        Job(
            name=f"health:{h.name}",
            run=partial(
                poll_until_healthy,
                f"health:{h.name}",
                ctx.target.url(h.service, h.path),
                interval_s=cfg.poll_interval_s,
                request_timeout_s=h.request_timeout_s,
            ),
            timeout_s=h.timeout_s or cfg.health_timeout_s,
        )
        for h in cfg.suite.health
    ]


def _smoke_job(ctx: StageContext, check) -> Job:
    def run(deadline: Deadline) -> CheckResult:
        return expect_http(
            f"smoke:{check.name}",
            ctx.target.url(check.probe.service, check.probe.path),
            method=check.probe.method,
            json=check.probe.json_body,
            headers=dict(check.probe.headers) or None,
            timeout_s=max(deadline.clip(check.probe.timeout_s), 0.05),
            expect_status=check.expect_status,
            expect_body=check.expect_body,
        )

    return Job(name=f"smoke:{check.name}", run=run, timeout_s=check.probe.timeout_s)


def _smoke_jobs(ctx: StageContext) -> list[Job]:
    return [_smoke_job(ctx, check) for check in ctx.config.suite.smoke]


def _pattern_job(name, verify, settings, ctx: StageContext) -> Job:
    return Job(
        name=name,
        run=lambda deadline: verify(settings, ctx.target, deadline, ctx.remote_factory),
        timeout_s=settings.timeout_s,
    )


def _pattern_jobs(ctx: StageContext) -> list[Job]:
    suite = ctx.config.suite
    candidates = [
        ("retry", patterns.verify_retry, suite.retry),
        ("circuit-breaker", patterns.verify_circuit_breaker, suite.circuit_breaker),
        ("rate-limit", patterns.verify_rate_limit, suite.rate_limit),
    ]
    return [
        _pattern_job(name, verify, settings, ctx)
        for name, verify, settings in candidates
        if settings.enabled
    ]


def _cache_jobs(ctx: StageContext) -> list[Job]:
    cache = ctx.config.suite.cache
    if not cache.enabled:
        return []
    return [_pattern_job("cache", patterns.verify_cache, cache, ctx)]


def _observability_jobs(ctx: StageContext) -> list[Job]:
    logs = ctx.config.suite.logs
    if not logs.enabled:
        return []
    jobs: list[Job] = []
    if ctx.remote_factory is not None:
        for container in logs.containers:
            jobs.append(
                Job(
                    name=f"logs:{container}",
                    run=partial(
                        diagnostics.inspect_container_logs,
                        container,
                        logs,
                        ctx.remote_factory,
                        ctx.config.logs_dir,
                    ),
                    timeout_s=logs.command_timeout_s,
                )
            )
    if logs.traces_probe is not None:
        jobs.append(
            Job(
                name="traces",
                run=partial(diagnostics.inspect_traces, logs, ctx.target),
                timeout_s=logs.traces_probe.timeout_s,
            )
        )
    return jobs


def build_plan(config: RunConfig) -> list[Stage]:
    """Every stage the verifier knows, in execution order."""
    return [
        Stage(
            name="health",
            levels=ALL_LEVELS,
            build=_health_jobs,
            description="Poll service health endpoints",
        ),
        Stage(
            name="smoke",
            levels=frozenset({"FULL", "SMOKE_ONLY"}),
            build=_smoke_jobs,
            description="Basic request/response expectations",
        ),
        Stage(
            name="patterns",
            levels=frozenset({"FULL", "PATTERNS_ONLY"}),
            build=_pattern_jobs,
            description="Retry, circuit breaker and rate limiting under load",
        ),
        Stage(
            name="cache",
            levels=frozenset({"FULL", "PATTERNS_ONLY"}),
            build=_cache_jobs,
            parallel=False,
            description="Cache hit, miss and expiry",
        ),
        Stage(
            name="observability",
            levels=frozenset({"FULL"}),
            build=_observability_jobs,
            required=config.suite.logs.required,
            description="Container logs and traces",
        ),
    ]


def select_stages(config: RunConfig) -> list[Stage]:
    return [s for s in build_plan(config) if s.includes(config.test_level)]
