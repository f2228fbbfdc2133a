from __future__ import annotations

import ipaddress
import json
import logging
import re
from pathlib import Path
from typing import Callable, Optional

from verifier.errors import UnresolvedTargetError
from verifier.models import Ports, Target

logger = logging.getLogger(__name__)

ARTIFACT_KEYS = ("vm_ip", "public_ip", "ip", "host")

_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"
)

UpstreamLookup = Callable[[], Optional[str]]


def is_valid_host(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return bool(_HOSTNAME_RE.match(host))


def _present(value: str | None) -> bool:
    return value is not None and value.strip() != ""


def artifact_lookup(path: Path | str) -> UpstreamLookup:
    """
    Build a lookup reading the host from an upstream build artifact. The
    artifact is either JSON (an object holding one of ARTIFACT_KEYS, flat or
    Terraform-output shaped ``{"vm_ip": {"value": ...}}``) or plain text
    whose first non-empty line is the host.
    """
    path = Path(path)

    def lookup() -> str | None:
        if not path.exists():
            logger.debug("Upstream artifact %s not found", path)
            return None
        raw = path.read_text().strip()
        if not raw:
            return None
        if raw.startswith("{"):
            payload = json.loads(raw)
            for key in ARTIFACT_KEYS:
                value = payload.get(key)
                if isinstance(value, dict):
                    value = value.get("value")
                if isinstance(value, str) and value.strip():
                    return value.strip()
            return None
        return raw.splitlines()[0].strip()

    return lookup


def resolve_target(
    explicit: str | None = None,
    default: str | None = None,
    upstream: UpstreamLookup | None = None,
    ports: Ports | None = None,
) -> Target:
    """
    Pick the host under test. Precedence: explicit, then default, then the
    upstream lookup (only consulted when both are absent). Blank values
    count as absent; an explicit host is returned untouched.
    """
    ports = ports or Ports()

    if _present(explicit):
        source, host = "explicit", explicit
    elif _present(default):
        source, host = "default", default.strip()
    elif upstream is not None:
        try:
            host = upstream()
        except (OSError, ValueError) as exc:
            raise UnresolvedTargetError(f"Upstream artifact lookup failed: {exc}") from exc
        if not _present(host):
            raise UnresolvedTargetError(
                "No target host: no explicit VM_IP, no default and nothing in the upstream artifact"
            )
        source = "upstream"
    else:
        raise UnresolvedTargetError("No target host: no explicit VM_IP and no default")

    if not is_valid_host(host):
        raise UnresolvedTargetError(f"Invalid {source} target host: {host!r}")

    logger.info("Target resolved from %s: %s", source, host)
    return Target(host=host, ports=ports)
