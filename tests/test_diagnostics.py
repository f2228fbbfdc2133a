import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import paramiko
from fakes import FakeRemote

from verifier.checks.results import ProbeResult
from verifier.deadline import Deadline
from verifier.diagnostics import (
    capture_emergency_diagnostics,
    find_errors,
    inspect_container_logs,
    inspect_traces,
)
from verifier.errors import CheckFailed, UnreachableHostError
from verifier.models import LogsSettings, Target

CLEAN_LOG = "listening on :8000\nGET /version 200 1ms\n"
NOISY_LOG = "listening on :8000\nERROR connection to users-api refused\npanic: runtime error\n"


class FindErrorsTests(unittest.TestCase):
    def test_matches_default_patterns(self) -> None:
        lines = find_errors(NOISY_LOG, LogsSettings().error_patterns)
        self.assertEqual(len(lines), 2)

    def test_ignores_words_containing_error(self) -> None:
        self.assertEqual(find_errors("errorHandler registered\n", [r"\bERROR\b"]), [])


class InspectContainerLogsTests(unittest.TestCase):
    def test_clean_logs_pass_and_are_saved(self) -> None:
        remote = FakeRemote(stdout=CLEAN_LOG)
        with tempfile.TemporaryDirectory() as td:
            result = inspect_container_logs("auth-api", LogsSettings(tail=50), lambda: remote, td, Deadline(30))
            saved = (Path(td) / "auth-api.log").read_text()

        self.assertEqual(result.status, "PASS")
        self.assertEqual(remote.commands, ["docker logs --tail 50 auth-api 2>&1"])
        self.assertIn("GET /version", saved)

    def test_error_lines_fail(self) -> None:
        remote = FakeRemote(stdout=NOISY_LOG)
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(CheckFailed) as ctx:
                inspect_container_logs("auth-api", LogsSettings(), lambda: remote, td, Deadline(30))

        self.assertIn("2 error line(s)", str(ctx.exception))

    def test_missing_container_fails(self) -> None:
        remote = FakeRemote(exit_codes={"docker logs": 1}, stdout="Error: No such container: ghost")
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(CheckFailed):
                inspect_container_logs("ghost", LogsSettings(), lambda: remote, td, Deadline(30))


class InspectTracesTests(unittest.TestCase):
    def test_services_reported(self) -> None:
        body = json.dumps(["auth-api", "todos-api"])
        with patch(
            "verifier.diagnostics.run_http",
            return_value=ProbeResult(ok=True, latency_ms=8, status_code=200, body=body),
        ) as mock_http:
            result = inspect_traces(LogsSettings(), Target(host="10.0.0.5"), Deadline(30))

        self.assertEqual(mock_http.call_args.args[0], "http://10.0.0.5:9411/api/v2/services")
        self.assertEqual(result.status, "PASS")
        self.assertIn("2 traced service", result.detail)

    def test_empty_trace_store_fails(self) -> None:
        with patch(
            "verifier.diagnostics.run_http",
            return_value=ProbeResult(ok=True, latency_ms=8, status_code=200, body="[]"),
        ):
            with self.assertRaises(CheckFailed):
                inspect_traces(LogsSettings(), Target(host="10.0.0.5"), Deadline(30))


class EmergencyDiagnosticsTests(unittest.TestCase):
    def test_writes_snapshot_and_logs(self) -> None:
        remote = FakeRemote(stdout="CONTAINER ID   IMAGE")
        with tempfile.TemporaryDirectory() as td:
            written = capture_emergency_diagnostics(lambda: remote, ["auth-api"], td, tail=20)
            names = sorted(p.name for p in written)
            content = (Path(td) / "emergency" / "docker-ps.txt").read_text()

        self.assertEqual(names, ["docker-ps.txt", "docker-stats.txt", "logs-auth-api.txt"])
        self.assertIn("$ docker ps -a", content)
        self.assertIn("docker logs --tail 20 auth-api 2>&1", remote.commands)

    def test_unreachable_host_is_tolerated(self) -> None:
        class Refusing(FakeRemote):
            def open(self):
                raise UnreachableHostError("no route to host")

        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(capture_emergency_diagnostics(Refusing, ["auth-api"], td), [])

    def test_failed_command_does_not_stop_the_rest(self) -> None:
        class Flaky(FakeRemote):
            def run(self, command, timeout_s=60):
                if command.startswith("docker stats"):
                    raise paramiko.SSHException("channel closed")
                return super().run(command, timeout_s)

        remote = Flaky()
        with tempfile.TemporaryDirectory() as td:
            written = capture_emergency_diagnostics(lambda: remote, ["auth-api"], td)
            names = sorted(p.name for p in written)

        self.assertEqual(names, ["docker-ps.txt", "logs-auth-api.txt"])

    def test_unwritable_logs_dir_is_tolerated(self) -> None:
        remote = FakeRemote()
        with tempfile.TemporaryDirectory() as td:
            blocker = Path(td) / "logs"
            blocker.write_text("not a directory")
            self.assertEqual(capture_emergency_diagnostics(lambda: remote, ["auth-api"], blocker), [])

        self.assertEqual(remote.opened, 0)

    def test_without_remote_channel_nothing_is_captured(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(capture_emergency_diagnostics(None, ["auth-api"], td), [])


if __name__ == "__main__":
    unittest.main()
