from __future__ import annotations

import argparse
import logging
import sys

import yaml

from verifier.checks.results import PASS
from verifier.config import settings
from verifier.models import TEST_LEVELS
from verifier.registry import build_run_config, load_suite
from verifier.runner import run_verification
from verifier.target import artifact_lookup

logger = logging.getLogger("verifier")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deploy-verify",
        description="Verify a freshly deployed microservice stack and write a pass/fail report.",
    )
    parser.add_argument("--vm-ip", default=settings.VM_IP, help="Host of the deployed stack (VM_IP)")
    parser.add_argument("--default-ip", default=settings.DEFAULT_VM_IP, help="Fallback host (DEFAULT_VM_IP)")
    parser.add_argument(
        "--artifact",
        default=settings.UPSTREAM_ARTIFACT_PATH,
        help="Upstream build artifact holding the host (UPSTREAM_ARTIFACT_PATH)",
    )
    parser.add_argument(
        "--test-level",
        type=str.upper,
        choices=TEST_LEVELS,
        default=None,
        help="FULL, SMOKE_ONLY or PATTERNS_ONLY (TEST_LEVEL)",
    )
    parser.add_argument("--suite", default=settings.VERIFY_SUITE_PATH, help="Suite YAML file")
    parser.add_argument("--report-path", default=None, help="JSON report output path")
    parser.add_argument("--logs-dir", default=None, help="Directory for captured logs")
    parser.add_argument("--run-timeout", type=float, default=None, help="Global run budget in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("paramiko").setLevel(logging.WARNING)

    try:
        suite = load_suite(args.suite)
        config = build_run_config(
            settings,
            suite,
            test_level=args.test_level,
            report_path=args.report_path,
            logs_dir=args.logs_dir,
            run_timeout_s=args.run_timeout,
        )
    except (ValueError, yaml.YAMLError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_FATAL

    report = run_verification(
        config,
        explicit_host=args.vm_ip,
        default_host=args.default_ip,
        upstream=artifact_lookup(args.artifact) if args.artifact else None,
    )
    print(f"Verification {report.status}: {report.summary()}")

    if report.fatal is not None:
        return EXIT_FATAL
    return EXIT_OK if report.status == PASS else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
