from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from requests.structures import CaseInsensitiveDict

from verifier.checks.results import CommandResult


class FakeClock:
    """Stands in for the ``time`` module; sleeping advances the clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def monotonic(self) -> float:
        with self._lock:
            return self.now

    perf_counter = monotonic
    time = monotonic

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int, headers: dict | None = None, text: str = "") -> None:
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.text = text


@dataclass
class Reply:
    status: int
    latency_s: float = 0.01
    headers: dict = field(default_factory=dict)
    text: str = ""


class FakeSession:
    """
    Scripted ``requests.Session``. ``script`` is either a list of Reply /
    Exception items consumed in order or a callable ``(method, url) -> Reply``.
    """

    def __init__(self, clock: FakeClock, script: list | Callable[[str, str], Any]) -> None:
        self.clock = clock
        self.script = script
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        if callable(self.script):
            item = self.script(method, url)
        else:
            item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        self.clock.advance(item.latency_s)
        return FakeResponse(item.status, item.headers, item.text)

    def __enter__(self) -> FakeSession:
        return self

    def __exit__(self, *exc_info) -> None:
        return None


class FakeRemote:
    """Remote session recording commands; exit codes per command prefix."""

    def __init__(self, exit_codes: dict[str, int] | None = None, stdout: str = "ok") -> None:
        self.exit_codes = exit_codes or {}
        self.stdout = stdout
        self.commands: list[str] = []
        self.opened = 0
        self.closed = 0

    def open(self) -> FakeRemote:
        self.opened += 1
        return self

    def run(self, command: str, timeout_s: float = 60) -> CommandResult:
        self.commands.append(command)
        exit_status = next(
            (code for prefix, code in self.exit_codes.items() if command.startswith(prefix)),
            0,
        )
        return CommandResult(
            command=command,
            exit_status=exit_status,
            stdout=self.stdout,
            stderr="boom" if exit_status else "",
        )

    def close(self) -> None:
        self.closed += 1

    def __enter__(self) -> FakeRemote:
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()
