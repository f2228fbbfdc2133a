from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

import requests

from verifier.checks.results import FAIL, PASS, TIMEOUT, CheckResult
from verifier.connectivity import probe_connectivity
from verifier.deadline import Deadline
from verifier.diagnostics import capture_emergency_diagnostics
from verifier.errors import (
    CheckFailed,
    CheckTimedOut,
    FatalVerificationError,
    RuntimeNotReadyError,
    UnresolvedTargetError,
)
from verifier.models import RunConfig, Target
from verifier.plan import Job, Stage, StageContext, select_stages
from verifier.remote import RemoteFactory, session_factory
from verifier.reporting import RunReport, write_report
from verifier.target import UpstreamLookup, resolve_target

logger = logging.getLogger(__name__)


def execute_job(job: Job, stage: Stage, run_deadline: Deadline) -> CheckResult:
    """
    Run one job under min(job budget, run budget) and turn whatever it
    produces or raises into a CheckResult owned by that job.
    """
    deadline = run_deadline.child(job.timeout_s)
    try:
        result = job.run(deadline)
    except CheckTimedOut as exc:
        result = CheckResult(name=job.name, status=TIMEOUT, detail=str(exc))
    except CheckFailed as exc:
        result = CheckResult(name=job.name, status=FAIL, detail=str(exc))
    except (requests.RequestException, FatalVerificationError) as exc:
        result = CheckResult(
            name=job.name, status=FAIL, detail=f"{type(exc).__name__}: {exc}"
        )
    except Exception as exc:
        logger.exception("%s raised unexpectedly", job.name)
        result = CheckResult(
            name=job.name, status=FAIL, detail=f"{type(exc).__name__}: {exc}"
        )
    return dataclasses.replace(result, name=job.name, stage=stage.name, required=stage.required)


def _timed_out(job: Job, stage: Stage) -> CheckResult:
    return CheckResult(
        name=job.name,
        status=TIMEOUT,
        detail="run timeout reached before the check completed",
        stage=stage.name,
        required=stage.required,
    )


def run_stage(stage: Stage, jobs: list[Job], report: RunReport, run_deadline: Deadline) -> None:
    """
    Fan out the stage's jobs and wait for all of them (fan-in). Results
    are appended in completion order; jobs still running when the run
    deadline passes are recorded as TIMEOUT and abandoned.
    """
    if not jobs:
        return
    logger.info("Stage %s (%s): %d check(s)", stage.name, stage.description or "-", len(jobs))

    if run_deadline.expired:
        report.extend([_timed_out(job, stage) for job in jobs])
        return

    if not stage.parallel:
        for job in jobs:
            if run_deadline.expired:
                report.append(_timed_out(job, stage))
                continue
            report.append(execute_job(job, stage, run_deadline))
        return

    executor = ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix=f"verify-{stage.name}")
    pending: dict[Future, Job] = {
        executor.submit(execute_job, job, stage, run_deadline): job for job in jobs
    }
    try:
        while pending and not run_deadline.expired:
            done, _ = wait(pending, timeout=run_deadline.remaining(), return_when=FIRST_COMPLETED)
            for future in done:
                pending.pop(future)
                report.append(future.result())
        for future, job in pending.items():
            if future.done():
                report.append(future.result())
                continue
            future.cancel()
            report.append(_timed_out(job, stage))
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def _remote_factory_for(target: Target, config: RunConfig) -> RemoteFactory:
    return session_factory(target.host, config.ssh)


def run_verification(
    config: RunConfig,
    *,
    explicit_host: str | None = None,
    default_host: str | None = None,
    upstream: UpstreamLookup | None = None,
    remote_factory: RemoteFactory | None = None,
) -> RunReport:
    """
    Resolve the target, gate on connectivity, run the selected stages in
    order and write the report. Always returns a finalized report; fatal
    errors become a single failing entry.
    """
    run_deadline = Deadline(config.run_timeout_s)
    report = RunReport(test_level=config.test_level)
    stages = select_stages(config)
    logger.info(
        "Verification run: level=%s stages=%s",
        config.test_level,
        ",".join(s.name for s in stages),
    )

    try:
        _verify(
            config, report, stages, run_deadline, explicit_host, default_host, upstream, remote_factory
        )
    finally:
        write_report(report, config.report_path)
    return report


def _verify(
    config: RunConfig,
    report: RunReport,
    stages: list[Stage],
    run_deadline: Deadline,
    explicit_host: str | None,
    default_host: str | None,
    upstream: UpstreamLookup | None,
    remote_factory: RemoteFactory | None,
) -> None:
    try:
        target = resolve_target(explicit_host, default_host, upstream, ports=config.ports)
    except UnresolvedTargetError as exc:
        logger.error("Target resolution failed: %s", exc)
        report.record_fatal("target", exc)
        return

    report.host = target.host
    if remote_factory is None:
        remote_factory = _remote_factory_for(target, config)

    try:
        results = probe_connectivity(target, config, remote_factory)
    except FatalVerificationError as exc:
        logger.error("Connectivity gate failed: %s", exc)
        report.record_fatal("connectivity", exc)
        if isinstance(exc, RuntimeNotReadyError):
            _emergency(config, remote_factory)
        return
    report.append(CheckResult(name="target", status=PASS, detail=target.host, stage="target"))
    report.extend([dataclasses.replace(r, stage="connectivity") for r in results])

    ctx = StageContext(config=config, target=target, remote_factory=remote_factory)
    for stage in stages:
        run_stage(stage, stage.build(ctx), report, run_deadline)
        if run_deadline.expired:
            logger.error("Run timeout of %ss reached during stage %s", config.run_timeout_s, stage.name)

    if report.status != PASS:
        _emergency(config, remote_factory)


def _emergency(config: RunConfig, remote_factory: RemoteFactory | None) -> None:
    logs = config.suite.logs
    capture_emergency_diagnostics(
        remote_factory,
        containers=logs.containers,
        logs_dir=config.logs_dir,
        tail=logs.tail,
        timeout_s=logs.command_timeout_s,
    )
