from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

TestLevel = Literal["FULL", "SMOKE_ONLY", "PATTERNS_ONLY"]
TEST_LEVELS: tuple[str, ...] = ("FULL", "SMOKE_ONLY", "PATTERNS_ONLY")

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]


class Ports(BaseModel):
    model_config = ConfigDict(frozen=True)

    frontend: int = Field(3000, ge=1, le=65535)
    auth_api: int = Field(8000, ge=1, le=65535)
    todos_api: int = Field(8082, ge=1, le=65535)
    users_api: int = Field(8083, ge=1, le=65535)
    zipkin: int = Field(9411, ge=1, le=65535)

    def for_service(self, service: str) -> int:
        if service not in type(self).model_fields:
            raise KeyError(f"No port configured for service: {service}")
        return getattr(self, service)


class Target(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    ports: Ports = Ports()

    def url(self, service: str, path: str = "/") -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"http://{self.host}:{self.ports.for_service(service)}{path}"


class SshConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: str = "ubuntu"
    key_path: Optional[str] = None
    port: int = Field(22, ge=1, le=65535)
    connect_timeout_s: float = Field(10, gt=0)


class Probe(BaseModel):
    """One HTTP request against a service of the deployed stack."""

    model_config = ConfigDict(frozen=True)

    service: str
    path: str = "/"
    method: HttpMethod = "GET"
    json_body: Optional[dict] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_s: float = Field(5, gt=0)


class FaultSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    inject_command: str
    restore_command: str
    duration_s: float = Field(5, ge=0)
    command_timeout_s: float = Field(30, gt=0)


class HealthEndpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    service: str
    path: str = "/"
    timeout_s: Optional[float] = Field(default=None, gt=0)
    request_timeout_s: float = Field(5, gt=0)


class SmokeCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    probe: Probe
    expect_status: List[int] = Field(default_factory=lambda: [200])
    expect_body: Optional[str] = None


def _enabled_by_fault(data: Any) -> Any:
    # unless set explicitly, the check is on exactly when a fault is configured
    if isinstance(data, dict) and data.get("enabled") is None:
        return {**data, "enabled": data.get("fault") is not None}
    return data


class RetrySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    probe: Probe = Probe(service="auth_api", path="/version")
    fault: Optional[FaultSpec] = None
    max_attempts: Optional[int] = Field(default=None, ge=1)
    backoff: Literal["fixed", "exponential"] = "exponential"
    base_delay_s: float = Field(1.0, ge=0)
    attempts_header: Optional[str] = "X-Retry-Attempts"
    timeout_s: float = Field(60, gt=0)

    @model_validator(mode="before")
    @classmethod
    def enable_with_fault(cls, data: Any) -> Any:
        return _enabled_by_fault(data)


class CircuitBreakerSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    probe: Probe = Probe(service="todos_api", path="/todos")
    fault: Optional[FaultSpec] = None
    failure_threshold: int = Field(5, ge=1)
    open_statuses: List[int] = Field(default_factory=lambda: [503])
    fast_fail_ms: int = Field(250, ge=1)
    open_probe_count: int = Field(3, ge=1)
    state_path: Optional[str] = None
    state_field: str = "state"
    cooldown_s: float = Field(10, ge=0)
    recovery_budget_s: float = Field(30, gt=0)
    timeout_s: float = Field(120, gt=0)

    @model_validator(mode="before")
    @classmethod
    def enable_with_fault(cls, data: Any) -> Any:
        return _enabled_by_fault(data)


class RateLimitSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    probe: Probe = Probe(service="auth_api", path="/version")
    limit: int = Field(10, ge=0)
    burst: int = Field(20, ge=1)
    throttle_status: int = 429
    window_s: float = Field(1, ge=0)
    timeout_s: float = Field(60, gt=0)


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    probe: Probe = Probe(service="todos_api", path="/todos")
    cache_header: Optional[str] = "X-Cache"
    hit_value: str = "HIT"
    miss_value: str = "MISS"
    min_speedup: float = Field(1.5, ge=1)
    ttl_s: float = Field(5, ge=0)
    timeout_s: float = Field(60, gt=0)


class LogsSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    required: bool = False
    containers: List[str] = Field(
        default_factory=lambda: ["frontend", "auth-api", "todos-api", "users-api"]
    )
    tail: int = Field(200, ge=1)
    error_patterns: List[str] = Field(
        default_factory=lambda: [
            r"\bERROR\b",
            r"\bFATAL\b",
            r"panic:",
            r"Traceback \(most recent call last\)",
            r"Unhandled(Promise)?Rejection",
        ]
    )
    traces_probe: Optional[Probe] = Probe(service="zipkin", path="/api/v2/services")
    command_timeout_s: float = Field(30, gt=0)


def _default_health() -> list[HealthEndpoint]:
    return [
        HealthEndpoint(name="frontend", service="frontend", path="/"),
        HealthEndpoint(name="auth-api", service="auth_api", path="/version"),
        HealthEndpoint(name="zipkin", service="zipkin", path="/health"),
    ]


def _default_smoke() -> list[SmokeCheck]:
    return [
        SmokeCheck(name="frontend-index", probe=Probe(service="frontend", path="/")),
        SmokeCheck(
            name="auth-version", probe=Probe(service="auth_api", path="/version")
        ),
        SmokeCheck(
            name="todos-requires-auth",
            probe=Probe(service="todos_api", path="/todos"),
            expect_status=[401, 403],
        ),
        SmokeCheck(
            name="zipkin-services",
            probe=Probe(service="zipkin", path="/api/v2/services"),
        ),
    ]


class Suite(BaseModel):
    model_config = ConfigDict(frozen=True)

    health: List[HealthEndpoint] = Field(default_factory=_default_health)
    smoke: List[SmokeCheck] = Field(default_factory=_default_smoke)
    retry: RetrySettings = RetrySettings()
    circuit_breaker: CircuitBreakerSettings = CircuitBreakerSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    cache: CacheSettings = CacheSettings()
    logs: LogsSettings = LogsSettings()


class RunConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_level: TestLevel = "FULL"
    ports: Ports = Ports()
    ssh: SshConfig = SshConfig()
    health_timeout_s: float = Field(60, gt=0)
    poll_interval_s: float = Field(3, gt=0)
    run_timeout_s: float = Field(900, gt=0)
    report_path: str = "reports/verification-report.json"
    logs_dir: str = "reports/logs"
    suite: Suite = Suite()
