#!/usr/bin/env python3
"""
Readiness gate: block until an endpoint accepts a TCP connection or the budget runs out.

This is the only place the pipeline waits on an external, non-deterministic
condition.
"""

from __future__ import annotations

import socket
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from . import console
from .models import ServiceEndpoint


class GateStatus(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class GateResult:
    status: GateStatus
    elapsed: float
    attempts: int

    @property
    def ready(self) -> bool:
        return self.status is GateStatus.READY


def tcp_probe(endpoint: ServiceEndpoint, timeout: float = 2.0) -> bool:
    """Return True if the endpoint accepts a TCP connection."""
    try:
        with socket.create_connection((endpoint.host, endpoint.port), timeout=timeout):
            return True
    except OSError:
        return False


def wait_for_endpoint(
    endpoint: ServiceEndpoint,
    poll_interval: float,
    timeout: float,
    *,
    probe: Callable[[ServiceEndpoint], bool] = tcp_probe,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> GateResult:
    """
    Poll ``endpoint`` until it accepts a connection or ``timeout`` elapses.

    Sleeps are clamped to the remaining budget, so a never-reachable endpoint
    returns TIMED_OUT at the timeout boundary (within one poll interval).
    """
    if poll_interval <= 0 or timeout <= 0:
        raise ValueError("poll_interval and timeout must be positive")

    console.info(f"Waiting for {endpoint} (timeout: {timeout:g}s)...")
    start = clock()
    attempts = 0

    while True:
        attempts += 1
        if probe(endpoint):
            elapsed = clock() - start
            console.success(f"{endpoint.name} is accepting connections after {elapsed:.1f}s")
            return GateResult(GateStatus.READY, elapsed, attempts)

        elapsed = clock() - start
        remaining = timeout - elapsed
        if remaining <= 0:
            return GateResult(GateStatus.TIMED_OUT, elapsed, attempts)

        console.info(f"  [{int(elapsed)}s] {endpoint.name} not reachable yet, retrying in {min(poll_interval, remaining):g}s...")
        sleep(min(poll_interval, remaining))
