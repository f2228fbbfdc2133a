from __future__ import annotations

import logging
import time
from typing import Any

import requests

from verifier.checks.results import FAIL, PASS, TIMEOUT, CheckResult, ProbeResult
from verifier.deadline import Deadline

logger = logging.getLogger(__name__)

MIN_REQUEST_TIMEOUT_S = 0.05


def run_http(
    url: str,
    timeout_s: float,
    connect_timeout_s: float | None = None,
    *,
    method: str = "GET",
    json: Any = None,
    headers: dict[str, str] | None = None,
    session: requests.Session | None = None,
) -> ProbeResult:
    http = session if session is not None else requests
    start = time.perf_counter()
    try:
        connect_timeout = timeout_s if connect_timeout_s is None else connect_timeout_s
        r = http.request(
            method,
            url,
            json=json,
            headers=headers,
            timeout=(connect_timeout, timeout_s),
        )
        latency_ms = int((time.perf_counter() - start) * 1000)
        ok = 200 <= r.status_code < 300
        return ProbeResult(
            ok=ok,
            latency_ms=latency_ms,
            status_code=r.status_code,
            headers=r.headers,
            body=r.text,
        )
    except Exception as e:
        latency_ms = int((time.perf_counter() - start) * 1000)
        return ProbeResult(ok=False, latency_ms=latency_ms, error=str(e))


def poll_until_healthy(
    name: str,
    url: str,
    deadline: Deadline,
    interval_s: float,
    request_timeout_s: float = 5,
) -> CheckResult:
    """
    Poll ``url`` every ``interval_s`` until it answers HTTP 200 or the
    deadline is spent. Request timeouts are clipped to the remaining
    budget so the call never outlives its deadline by more than one
    polling interval.
    """
    start = time.monotonic()
    attempts = 0
    last: ProbeResult | None = None

    while not deadline.expired:
        attempts += 1
        timeout = max(deadline.clip(request_timeout_s), MIN_REQUEST_TIMEOUT_S)
        last = run_http(url, timeout_s=timeout)
        if last.status_code == 200:
            waited = time.monotonic() - start
            return CheckResult(
                name=name,
                status=PASS,
                latency_ms=last.latency_ms,
                detail=f"HTTP 200 from {url} after {attempts} attempt(s) in {waited:.1f}s",
            )
        logger.debug(
            "%s not healthy yet (attempt %d): %s",
            name,
            attempts,
            last.error or f"HTTP {last.status_code}",
        )
        if not deadline.sleep(interval_s):
            break

    waited = time.monotonic() - start
    if last is None:
        reason = "no attempt made"
    else:
        reason = last.error or f"last status HTTP {last.status_code}"
    return CheckResult(
        name=name,
        status=TIMEOUT,
        latency_ms=int(waited * 1000),
        detail=f"{url} not healthy after {attempts} attempt(s) in {waited:.1f}s ({reason})",
    )


def expect_http(
    name: str,
    url: str,
    *,
    method: str = "GET",
    json: Any = None,
    headers: dict[str, str] | None = None,
    timeout_s: float = 5,
    expect_status: list[int] | None = None,
    expect_body: str | None = None,
) -> CheckResult:
    expected = expect_status or [200]
    res = run_http(url, timeout_s=timeout_s, method=method, json=json, headers=headers)
    if res.status_code is None:
        return CheckResult(
            name=name, status=FAIL, latency_ms=res.latency_ms, detail=f"{method} {url}: {res.error}"
        )
    if res.status_code not in expected:
        return CheckResult(
            name=name,
            status=FAIL,
            latency_ms=res.latency_ms,
            detail=f"{method} {url}: HTTP {res.status_code}, expected {expected}",
        )
    if expect_body is not None and expect_body not in res.body:
        return CheckResult(
            name=name,
            status=FAIL,
            latency_ms=res.latency_ms,
            detail=f"{method} {url}: body does not contain {expect_body!r}",
        )
    return CheckResult(
        name=name, status=PASS, latency_ms=res.latency_ms, detail=f"{method} {url}: HTTP {res.status_code}"
    )
