import unittest
from unittest.mock import patch

from fakes import FakeClock, FakeResponse

from verifier.checks.http_check import expect_http, poll_until_healthy, run_http
from verifier.checks.results import ProbeResult
from verifier.deadline import Deadline


class RunHttpTests(unittest.TestCase):
    def test_uses_read_timeout_as_connect_timeout_by_default(self) -> None:
        with patch(
            "verifier.checks.http_check.requests.request", return_value=FakeResponse(200)
        ) as mock_request:
            res = run_http("http://example.local/health", timeout_s=3)

        mock_request.assert_called_once_with(
            "GET", "http://example.local/health", json=None, headers=None, timeout=(3, 3)
        )
        self.assertTrue(res.ok)
        self.assertEqual(res.status_code, 200)

    def test_connect_timeout_override(self) -> None:
        with patch(
            "verifier.checks.http_check.requests.request", return_value=FakeResponse(204)
        ) as mock_request:
            run_http("http://example.local/health", timeout_s=3, connect_timeout_s=9.0)

        self.assertEqual(mock_request.call_args.kwargs["timeout"], (9.0, 3))

    def test_non_2xx_is_not_ok(self) -> None:
        with patch(
            "verifier.checks.http_check.requests.request", return_value=FakeResponse(503)
        ):
            res = run_http("http://example.local/health", timeout_s=3)

        self.assertFalse(res.ok)
        self.assertEqual(res.status_code, 503)

    def test_transport_error_becomes_result(self) -> None:
        with patch(
            "verifier.checks.http_check.requests.request",
            side_effect=ConnectionError("connection refused"),
        ):
            res = run_http("http://example.local/health", timeout_s=3)

        self.assertFalse(res.ok)
        self.assertIsNone(res.status_code)
        self.assertIn("refused", res.error)


class PollUntilHealthyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        for target in ("verifier.deadline.time", "verifier.checks.http_check.time"):
            patcher = patch(target, self.clock)
            patcher.start()
            self.addCleanup(patcher.stop)

    def test_never_responding_endpoint_times_out_at_budget(self) -> None:
        start = self.clock.now
        deadline = Deadline(60)
        with patch(
            "verifier.checks.http_check.run_http",
            return_value=ProbeResult(ok=False, latency_ms=0, error="connection refused"),
        ) as mock_run:
            result = poll_until_healthy("auth", "http://10.0.0.5:8000/version", deadline, interval_s=3)

        elapsed = self.clock.now - start
        self.assertEqual(result.status, "TIMEOUT")
        self.assertGreaterEqual(elapsed, 60)
        self.assertLessEqual(elapsed, 63)
        self.assertEqual(mock_run.call_count, 20)
        self.assertIn("connection refused", result.detail)

    def test_request_timeout_is_clipped_to_remaining_budget(self) -> None:
        deadline = Deadline(2)
        with patch(
            "verifier.checks.http_check.run_http",
            return_value=ProbeResult(ok=False, latency_ms=0, status_code=503),
        ) as mock_run:
            poll_until_healthy("x", "http://h/", deadline, interval_s=5, request_timeout_s=10)

        self.assertEqual(mock_run.call_args_list[0].kwargs["timeout_s"], 2)

    def test_passes_once_endpoint_answers_200(self) -> None:
        replies = [
            ProbeResult(ok=False, latency_ms=0, status_code=503),
            ProbeResult(ok=False, latency_ms=0, error="refused"),
            ProbeResult(ok=True, latency_ms=42, status_code=200),
        ]
        with patch("verifier.checks.http_check.run_http", side_effect=replies):
            result = poll_until_healthy("frontend", "http://h:3000/", Deadline(60), interval_s=3)

        self.assertEqual(result.status, "PASS")
        self.assertEqual(result.latency_ms, 42)
        self.assertIn("3 attempt", result.detail)
        self.assertEqual(self.clock.sleeps, [3, 3])

    def test_2xx_other_than_200_keeps_polling(self) -> None:
        replies = [
            ProbeResult(ok=True, latency_ms=1, status_code=204),
            ProbeResult(ok=True, latency_ms=1, status_code=200),
        ]
        with patch("verifier.checks.http_check.run_http", side_effect=replies):
            result = poll_until_healthy("x", "http://h/", Deadline(10), interval_s=1)

        self.assertEqual(result.status, "PASS")
        self.assertIn("2 attempt", result.detail)


class ExpectHttpTests(unittest.TestCase):
    def test_expected_status_passes(self) -> None:
        with patch(
            "verifier.checks.http_check.requests.request", return_value=FakeResponse(401)
        ):
            result = expect_http("smoke:todos", "http://h:8082/todos", expect_status=[401, 403])

        self.assertEqual(result.status, "PASS")

    def test_unexpected_status_fails(self) -> None:
        with patch(
            "verifier.checks.http_check.requests.request", return_value=FakeResponse(500)
        ):
            result = expect_http("smoke:auth", "http://h:8000/version")

        self.assertEqual(result.status, "FAIL")
        self.assertIn("HTTP 500", result.detail)

    def test_missing_body_fragment_fails(self) -> None:
        with patch(
            "verifier.checks.http_check.requests.request",
            return_value=FakeResponse(200, text='{"error": "bad credentials"}'),
        ):
            result = expect_http(
                "smoke:login", "http://h:8000/login", method="POST", expect_body="accessToken"
            )

        self.assertEqual(result.status, "FAIL")
        self.assertIn("accessToken", result.detail)


if __name__ == "__main__":
    unittest.main()
