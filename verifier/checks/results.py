from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Mapping

CheckStatus = Literal["PASS", "FAIL", "TIMEOUT"]

PASS: CheckStatus = "PASS"
FAIL: CheckStatus = "FAIL"
TIMEOUT: CheckStatus = "TIMEOUT"


@dataclass
class ProbeResult:
    ok: bool
    latency_ms: int
    status_code: int | None = None
    error: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    latency_ms: int = 0
    detail: str = ""
    stage: str = ""
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CommandResult:
    command: str
    exit_status: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0
