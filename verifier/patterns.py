"""
Resilience pattern checks driven with live traffic against the stack.

Each ``verify_*`` function runs one pattern end to end under its own
deadline and either returns a PASS ``CheckResult`` or raises
``CheckFailed`` / ``CheckTimedOut``. Every call opens its own HTTP session
and, when a fault is configured, its own remote session.
"""
from __future__ import annotations

import json
import logging
import time

import requests

from verifier.checks.http_check import MIN_REQUEST_TIMEOUT_S, run_http
from verifier.checks.results import PASS, CheckResult, ProbeResult
from verifier.deadline import Deadline
from verifier.errors import CheckFailed, CheckTimedOut
from verifier.models import (
    CacheSettings,
    CircuitBreakerSettings,
    FaultSpec,
    Probe,
    RateLimitSettings,
    RetrySettings,
    Target,
)
from verifier.remote import RemoteFactory, RemoteSession

logger = logging.getLogger(__name__)

RECOVERY_POLL_S = 1.0
EXPIRY_MARGIN_S = 0.5


def send(
    http: requests.Session,
    target: Target,
    probe: Probe,
    deadline: Deadline,
    path: str | None = None,
) -> ProbeResult:
    if deadline.expired:
        raise CheckTimedOut("deadline reached before request")
    timeout = max(deadline.clip(probe.timeout_s), MIN_REQUEST_TIMEOUT_S)
    return run_http(
        target.url(probe.service, path or probe.path),
        timeout_s=timeout,
        method=probe.method,
        json=probe.json_body,
        headers=dict(probe.headers) or None,
        session=http,
    )


def header_value(res: ProbeResult, name: str | None) -> str | None:
    if not name:
        return None
    wanted = name.lower()
    for key, value in res.headers.items():
        if key.lower() == wanted:
            return value
    return None


def _describe(res: ProbeResult) -> str:
    return res.error or f"HTTP {res.status_code}"


def _pause(deadline: Deadline, seconds: float, waiting_for: str) -> None:
    if not deadline.sleep(seconds):
        raise CheckTimedOut(f"deadline reached while waiting for {waiting_for}")


class FaultInjection:
    """
    Context manager that runs a fault's inject command on entry and its
    restore command on exit. Restore runs at most once and also runs when
    the body raises.
    """

    def __init__(self, fault: FaultSpec | None, remote_factory: RemoteFactory | None) -> None:
        self.fault = fault
        self.remote_factory = remote_factory
        self.active = False
        self.injected_at: float | None = None
        self._session: RemoteSession | None = None

    def __enter__(self) -> FaultInjection:
        if self.fault is None:
            return self
        if self.remote_factory is None:
            raise CheckFailed("fault injection configured but no remote channel available")

        self._session = self.remote_factory().open()
        res = self._session.run(self.fault.inject_command, timeout_s=self.fault.command_timeout_s)
        if not res.ok:
            self._close()
            raise CheckFailed(
                f"fault injection `{res.command}` exited with {res.exit_status}: {res.stderr}"
            )
        self.active = True
        self.injected_at = time.monotonic()
        logger.info("Injected fault: %s", self.fault.inject_command)
        return self

    def expire(self) -> None:
        """Restore once the fault has lasted its configured duration."""
        if self.active and time.monotonic() - self.injected_at >= self.fault.duration_s:
            self.restore()

    def restore(self) -> None:
        if not self.active:
            return
        self.active = False
        res = self._session.run(self.fault.restore_command, timeout_s=self.fault.command_timeout_s)
        if res.ok:
            logger.info("Restored fault: %s", self.fault.restore_command)
        else:
            logger.error(
                "Fault restore `%s` exited with %d: %s",
                res.command,
                res.exit_status,
                res.stderr,
            )

    def _close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __exit__(self, *exc_info) -> None:
        try:
            self.restore()
        finally:
            self._close()


def backoff_delay(cfg: RetrySettings, attempt: int) -> float:
    if cfg.backoff == "fixed":
        return cfg.base_delay_s
    return cfg.base_delay_s * (2 ** (attempt - 1))


def verify_retry(
    cfg: RetrySettings,
    target: Target,
    deadline: Deadline,
    remote_factory: RemoteFactory | None = None,
) -> CheckResult:
    """
    Issue requests through a transient fault, backing off between attempts.
    Passes iff a request succeeds within the attempt ceiling and, when the
    service reports its own retry count, that count is within the ceiling
    too.
    """
    max_attempts = cfg.max_attempts or 1
    delays: list[float] = []
    last: ProbeResult | None = None

    with requests.Session() as http, FaultInjection(cfg.fault, remote_factory) as fault:
        for attempt in range(1, max_attempts + 1):
            fault.expire()
            last = send(http, target, cfg.probe, deadline)
            if last.ok:
                detail = f"succeeded on attempt {attempt}/{max_attempts}"
                if delays:
                    detail += f" after backoff {', '.join(f'{d:g}s' for d in delays)}"
                reported = header_value(last, cfg.attempts_header)
                if reported is not None:
                    try:
                        server_attempts = int(reported)
                    except ValueError:
                        raise CheckFailed(
                            f"{cfg.attempts_header} is not an integer: {reported!r}"
                        ) from None
                    if server_attempts > max_attempts:
                        raise CheckFailed(
                            f"service needed {server_attempts} attempts, ceiling is {max_attempts}"
                        )
                    detail += f"; service reported {server_attempts} attempt(s)"
                return CheckResult(
                    name="retry", status=PASS, latency_ms=last.latency_ms, detail=detail
                )

            logger.debug("retry attempt %d/%d failed: %s", attempt, max_attempts, _describe(last))
            if attempt < max_attempts:
                delay = backoff_delay(cfg, attempt)
                delays.append(delay)
                _pause(deadline, delay, f"retry attempt {attempt + 1}")

    raise CheckFailed(
        f"no success within {max_attempts} attempt(s); last response {_describe(last)}"
    )


def _breaker_state(
    http: requests.Session,
    cfg: CircuitBreakerSettings,
    target: Target,
    deadline: Deadline,
) -> str | None:
    if not cfg.state_path:
        return None
    res = send(http, target, cfg.probe.model_copy(update={"method": "GET", "json_body": None}), deadline, path=cfg.state_path)
    if res.status_code != 200:
        return None
    try:
        payload = json.loads(res.body)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    value = payload.get(cfg.state_field)
    return str(value).lower().replace("-", "_") if value is not None else None


def _is_fast_fail(cfg: CircuitBreakerSettings, res: ProbeResult) -> bool:
    return res.status_code in cfg.open_statuses and res.latency_ms <= cfg.fast_fail_ms


def verify_circuit_breaker(
    cfg: CircuitBreakerSettings,
    target: Target,
    deadline: Deadline,
    remote_factory: RemoteFactory | None = None,
) -> CheckResult:
    """
    closed -> (failure_threshold failures) -> open -> fast-fail while open
    -> (fault cleared, cool-down) -> half-open/closed -> normal responses.
    """
    with requests.Session() as http, FaultInjection(cfg.fault, remote_factory) as fault:
        failures = 0
        for _ in range(cfg.failure_threshold):
            res = send(http, target, cfg.probe, deadline)
            if not res.ok:
                failures += 1
        if failures < cfg.failure_threshold:
            raise CheckFailed(
                f"only {failures}/{cfg.failure_threshold} requests failed; fault did not take effect"
            )

        state = _breaker_state(http, cfg, target, deadline)
        if cfg.state_path and state != "open":
            raise CheckFailed(
                f"breaker state is {state!r} after {failures} failures, expected 'open'"
            )

        slowest = 0
        for i in range(cfg.open_probe_count):
            res = send(http, target, cfg.probe, deadline)
            if res.ok:
                raise CheckFailed("request succeeded while breaker should be open")
            if not _is_fast_fail(cfg, res):
                raise CheckFailed(
                    f"open-breaker request {i + 1} took {res.latency_ms}ms with {_describe(res)}; "
                    f"expected one of {cfg.open_statuses} within {cfg.fast_fail_ms}ms"
                )
            slowest = max(slowest, res.latency_ms)
        logger.info("circuit breaker open, slowest fast-fail %dms", slowest)

        fault.restore()
        _pause(deadline, cfg.cooldown_s, "breaker cool-down")

        recovery = deadline.child(cfg.recovery_budget_s)
        recovery_start = time.monotonic()
        while True:
            res = send(http, target, cfg.probe, deadline)
            state = _breaker_state(http, cfg, target, deadline) if res.ok else None
            if res.ok and state != "open":
                waited = cfg.cooldown_s + time.monotonic() - recovery_start
                return CheckResult(
                    name="circuit-breaker",
                    status=PASS,
                    latency_ms=slowest,
                    detail=(
                        f"opened after {failures} failures, fast-fail max {slowest}ms, "
                        f"recovered {waited:.1f}s after fault cleared"
                    ),
                )
            if deadline.expired:
                raise CheckTimedOut("deadline reached while waiting for breaker to close")
            if not recovery.sleep(RECOVERY_POLL_S):
                raise CheckFailed(
                    f"breaker did not close within {cfg.recovery_budget_s:g}s of cool-down; "
                    f"last response {_describe(res)}"
                )


def verify_rate_limit(
    cfg: RateLimitSettings,
    target: Target,
    deadline: Deadline,
    remote_factory: RemoteFactory | None = None,
) -> CheckResult:
    """
    Send ``burst`` requests back to back; at least ``burst - limit`` must be
    throttled. After the window elapses the limiter must admit requests
    again.
    """
    with requests.Session() as http:
        statuses: list[int | None] = []
        for _ in range(cfg.burst):
            statuses.append(send(http, target, cfg.probe, deadline).status_code)

        throttled = sum(1 for s in statuses if s == cfg.throttle_status)
        expected = max(0, cfg.burst - cfg.limit)
        if throttled < expected:
            raise CheckFailed(
                f"{throttled}/{cfg.burst} requests throttled, expected at least {expected} "
                f"(limit {cfg.limit})"
            )

        _pause(deadline, cfg.window_s, "rate-limit window")
        res = send(http, target, cfg.probe, deadline)
        if res.status_code == cfg.throttle_status:
            raise CheckFailed(f"still throttled {cfg.window_s:g}s after burst")
        if not res.ok:
            raise CheckFailed(f"request after window failed: {_describe(res)}")

    return CheckResult(
        name="rate-limit",
        status=PASS,
        latency_ms=res.latency_ms,
        detail=f"{throttled}/{cfg.burst} throttled with HTTP {cfg.throttle_status}; recovered after window",
    )


def _cache_marker(cfg: CacheSettings, res: ProbeResult) -> str | None:
    value = header_value(res, cfg.cache_header)
    if value is None:
        return None
    value = value.strip().upper()
    if value.startswith(cfg.hit_value.upper()):
        return "HIT"
    if value.startswith(cfg.miss_value.upper()):
        return "MISS"
    return None


def _cached_faster(cfg: CacheSettings, slow: ProbeResult, fast: ProbeResult) -> bool:
    return slow.latency_ms >= max(fast.latency_ms, 1) * cfg.min_speedup


def verify_cache(
    cfg: CacheSettings,
    target: Target,
    deadline: Deadline,
    remote_factory: RemoteFactory | None = None,
) -> CheckResult:
    """
    miss -> hit -> (ttl) -> miss. The cache header decides when the service
    sends it; otherwise latency must drop by ``min_speedup`` on a hit.
    """

    def fetch() -> ProbeResult:
        res = send(http, target, cfg.probe, deadline)
        if not res.ok:
            raise CheckFailed(f"cache probe failed: {_describe(res)}")
        return res

    with requests.Session() as http:
        first = fetch()
        if _cache_marker(cfg, first) == "HIT":
            # warm from an earlier run; let it expire once
            _pause(deadline, cfg.ttl_s + EXPIRY_MARGIN_S, "cache expiry")
            first = fetch()
            if _cache_marker(cfg, first) == "HIT":
                raise CheckFailed("first request is a cache hit even after the TTL elapsed")

        second = fetch()
        first_mark, second_mark = _cache_marker(cfg, first), _cache_marker(cfg, second)
        by_header = first_mark is not None and second_mark is not None
        if by_header:
            if second_mark != "HIT":
                raise CheckFailed(f"second request reported {second_mark}, expected HIT")
        elif not _cached_faster(cfg, first, second):
            raise CheckFailed(
                f"no cache speedup: miss {first.latency_ms}ms, hit {second.latency_ms}ms "
                f"(need x{cfg.min_speedup:g})"
            )

        _pause(deadline, cfg.ttl_s + EXPIRY_MARGIN_S, "cache expiry")
        third = fetch()
        third_mark = _cache_marker(cfg, third)
        if by_header:
            if third_mark != "MISS":
                raise CheckFailed(f"request after TTL reported {third_mark}, expected MISS")
        elif not _cached_faster(cfg, third, second):
            raise CheckFailed(
                f"entry did not expire: after TTL {third.latency_ms}ms, hit {second.latency_ms}ms"
            )

    how = "cache header" if by_header else "latency"
    return CheckResult(
        name="cache",
        status=PASS,
        latency_ms=second.latency_ms,
        detail=(
            f"miss {first.latency_ms}ms, hit {second.latency_ms}ms, "
            f"expired after {cfg.ttl_s:g}s ({how})"
        ),
    )
