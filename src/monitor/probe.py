"""Reachability probes — TCP connect and HTTP request.

Each probe is a blocking call bounded by a timeout; the scheduler runs them
in a thread pool. A probe never raises for network trouble: every failure
mode becomes a Down ProbeResult with a readable reason. Only malformed
input (bad address syntax, port out of range) raises ValidationError.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import socket
import time
from collections.abc import Collection

import httpx

from .errors import ValidationError
from .models import MAX_PORT, MIN_PORT, ProbeResult, Protocol, Status

logger = logging.getLogger(__name__)

# Underscores are allowed: Docker and compose service names use them.
_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9_-]{1,63}(?<!-)$")

DEFAULT_HTTPS_PORTS = (443,)


# ── Input validation ─────────────────────────────────────────────────────────


def validate_address(address: str) -> str:
    """Return the normalized address or raise ValidationError.

    Accepts IPv4/IPv6 literals and host names (RFC 1123 plus underscores). URLs, paths and
    embedded ports are rejected; the port is a separate field.
    """
    addr = (address or "").strip()
    if not addr:
        raise ValidationError("Address must not be empty")
    try:
        ipaddress.ip_address(addr.strip("[]"))
        return addr.strip("[]")
    except ValueError:
        pass

    if len(addr) > 253:
        raise ValidationError(f"Address too long: {addr[:40]}…")
    labels = addr.rstrip(".").split(".")
    if not all(_HOSTNAME_LABEL.match(label) for label in labels):
        raise ValidationError(f"Invalid address: {addr!r}")
    return addr


def validate_port(port: int) -> int:
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError(f"Port must be an integer, got {port!r}")
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValidationError(f"Port must be between {MIN_PORT} and {MAX_PORT}, got {port}")
    return port


def _http_url(address: str, port: int, https_ports: Collection[int] = DEFAULT_HTTPS_PORTS) -> str:
    host = f"[{address}]" if ":" in address else address
    scheme = "https" if port in https_ports else "http"
    return f"{scheme}://{host}:{port}/"


# ── Probe runners ────────────────────────────────────────────────────────────


def run_tcp_check(address: str, port: int, timeout: float) -> ProbeResult:
    """Raw TCP port connectivity check."""
    t0 = time.perf_counter()
    try:
        sock = socket.create_connection((address, port), timeout=timeout)
        sock.close()
        latency = (time.perf_counter() - t0) * 1000
        return ProbeResult(
            status=Status.UP, latency_ms=round(latency, 1),
            message=f"Port {port} open",
        )
    except socket.timeout:
        return ProbeResult(
            status=Status.DOWN, latency_ms=round(timeout * 1000, 1),
            message=f"Connection timed out ({timeout:g}s)",
        )
    except ConnectionRefusedError:
        latency = (time.perf_counter() - t0) * 1000
        return ProbeResult(
            status=Status.DOWN, latency_ms=round(latency, 1),
            message=f"Connection refused on port {port}",
        )
    except Exception as e:
        latency = (time.perf_counter() - t0) * 1000
        return ProbeResult(
            status=Status.DOWN, latency_ms=round(latency, 1),
            message=f"TCP connect failed: {type(e).__name__}: {e}",
        )


def run_http_check(
    address: str,
    port: int,
    timeout: float,
    method: str = "HEAD",
    strict: bool = True,
    https_ports: Collection[int] = DEFAULT_HTTPS_PORTS,
) -> ProbeResult:
    """HTTP(S) check. Strict mode only accepts 2xx/3xx; lenient accepts any response.

    Ports listed in ``https_ports`` are probed over https, all others over http.
    """
    url = _http_url(address, port, https_ports)
    t0 = time.perf_counter()
    try:
        with httpx.Client(timeout=timeout, follow_redirects=False, verify=True) as client:
            resp = client.request(method, url)
        latency = (time.perf_counter() - t0) * 1000

        if not strict or 200 <= resp.status_code < 400:
            return ProbeResult(
                status=Status.UP, latency_ms=round(latency, 1),
                status_code=resp.status_code, message=f"HTTP {resp.status_code}",
            )
        return ProbeResult(
            status=Status.DOWN, latency_ms=round(latency, 1),
            status_code=resp.status_code,
            message=f"Unexpected HTTP status {resp.status_code}",
        )
    except httpx.TimeoutException:
        return ProbeResult(
            status=Status.DOWN, latency_ms=round(timeout * 1000, 1),
            message=f"Request timed out ({timeout:g}s)",
        )
    except httpx.ConnectError as e:
        latency = (time.perf_counter() - t0) * 1000
        return ProbeResult(
            status=Status.DOWN, latency_ms=round(latency, 1),
            message=f"Connection error: {e}",
        )
    except Exception as e:
        latency = (time.perf_counter() - t0) * 1000
        return ProbeResult(
            status=Status.DOWN, latency_ms=round(latency, 1),
            message=f"Error: {type(e).__name__}: {e}",
        )


# Dispatcher
PROBE_RUNNERS = {
    Protocol.TCP: lambda address, port, timeout, **_: run_tcp_check(address, port, timeout),
    Protocol.HTTP: run_http_check,
}


def check(
    address: str,
    port: int,
    protocol: Protocol,
    timeout: float,
    *,
    method: str = "HEAD",
    strict: bool = True,
    https_ports: Collection[int] = DEFAULT_HTTPS_PORTS,
) -> ProbeResult:
    """Probe one endpoint and return an Up/Down verdict."""
    address = validate_address(address)
    validate_port(port)
    try:
        runner = PROBE_RUNNERS[Protocol(protocol)]
    except ValueError:
        raise ValidationError(f"Unknown protocol: {protocol!r}") from None

    result = runner(address, port, timeout, method=method, strict=strict, https_ports=https_ports)
    logger.debug(
        "Probe %s %s:%d -> %s (%.1fms) %s",
        Protocol(protocol).value, address, port, result.status.value,
        result.latency_ms, result.message,
    )
    return result
