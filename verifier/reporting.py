from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from verifier.checks.results import FAIL, PASS, TIMEOUT, CheckResult

logger = logging.getLogger(__name__)

OverallStatus = Literal["PASS", "FAIL"]

REPORT_VERSION = 1


def serialize_ts(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def utcnow_iso() -> str:
    return serialize_ts(datetime.now(timezone.utc)) or ""


class ReportFinalizedError(RuntimeError):
    pass


class RunReport:
    """
    Append-only record of every check in a run. Appends are synchronized;
    once finalized the report refuses further results.
    """

    def __init__(self, test_level: str, host: str | None = None) -> None:
        self.test_level = test_level
        self.host = host
        self.started_at = utcnow_iso()
        self.finished_at: str | None = None
        self.fatal: str | None = None
        self._results: list[CheckResult] = []
        self._lock = threading.Lock()

    def append(self, result: CheckResult) -> None:
        with self._lock:
            if self.finished_at is not None:
                raise ReportFinalizedError(f"Report already finalized, rejecting {result.name}")
            self._results.append(result)
        if result.status != PASS:
            logger.warning("%s %s: %s", result.name, result.status, result.detail)

    def extend(self, results: list[CheckResult]) -> None:
        for result in results:
            self.append(result)

    def record_fatal(self, stage: str, exc: Exception) -> None:
        self.fatal = f"{type(exc).__name__}: {exc}"
        self.append(
            CheckResult(
                name=stage,
                status=FAIL,
                detail=self.fatal,
                stage=stage,
                required=True,
            )
        )

    @property
    def results(self) -> list[CheckResult]:
        with self._lock:
            return list(self._results)

    @property
    def finalized(self) -> bool:
        return self.finished_at is not None

    @property
    def status(self) -> OverallStatus:
        results = self.results
        if self.fatal is not None:
            return FAIL
        if all(r.status == PASS for r in results if r.required):
            return PASS
        return FAIL

    def finalize(self) -> RunReport:
        with self._lock:
            if self.finished_at is None:
                self.finished_at = utcnow_iso()
        return self

    def summary(self) -> dict[str, Any]:
        results = self.results
        failing = [r.name for r in results if r.required and r.status != PASS]
        advisory = [r.name for r in results if not r.required and r.status != PASS]
        return {
            "total": len(results),
            "passed": sum(1 for r in results if r.status == PASS),
            "failed": sum(1 for r in results if r.status == FAIL),
            "timed_out": sum(1 for r in results if r.status == TIMEOUT),
            "failing_required": failing,
            "failing_advisory": advisory,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": REPORT_VERSION,
            "status": self.status,
            "test_level": self.test_level,
            "host": self.host,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "fatal": self.fatal,
            "summary": self.summary(),
            "checks": [r.to_dict() for r in self.results],
        }


def render_report_text(report: dict[str, Any]) -> str:
    summary = report["summary"]
    lines = [
        f"# Deployment verification: {report['status']}",
        "",
        f"- Host: {report['host'] or 'unresolved'}",
        f"- Test level: {report['test_level']}",
        f"- Started: {report['started_at']}",
        f"- Finished: {report['finished_at']}",
        (
            f"- Checks: total={summary['total']}, passed={summary['passed']}, "
            f"failed={summary['failed']}, timed_out={summary['timed_out']}"
        ),
    ]
    if report["fatal"]:
        lines.append(f"- Fatal: {report['fatal']}")
    if summary["failing_required"]:
        lines.append(f"- Failing: {', '.join(summary['failing_required'])}")
    if summary["failing_advisory"]:
        lines.append(f"- Advisory: {', '.join(summary['failing_advisory'])}")

    stage = None
    for check in report["checks"]:
        if check["stage"] != stage:
            stage = check["stage"]
            lines.extend(["", f"## {stage or 'run'}"])
        suffix = "" if check["required"] else " (advisory)"
        line = f"- [{check['status']}] {check['name']}{suffix} {check['latency_ms']}ms"
        if check["detail"]:
            line += f" - {check['detail']}"
        lines.append(line)
    return "\n".join(lines)


def write_report(report: RunReport, path: Path | str) -> tuple[Path, Path]:
    """
    Write the JSON report to ``path`` and the text summary beside it,
    replacing any earlier run's files.
    """
    report.finalize()
    payload = report.to_dict()

    json_path = Path(path)
    json_path.parent.mkdir(parents=True, exist_ok=True)
    text_path = json_path.with_suffix(".txt")

    json_path.write_text(json.dumps(payload, indent=2) + "\n")
    text_path.write_text(render_report_text(payload) + "\n")
    logger.info("Report written to %s (%s)", json_path, payload["status"])
    return json_path, text_path
