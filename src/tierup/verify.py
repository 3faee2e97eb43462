#!/usr/bin/env python3
"""
Post-deploy verification.

Checks the final state (containers running on the network, volume present,
endpoints reachable). Every discrepancy, including an unexpected error while
checking, is downgraded to a VerificationWarning: verification never changes
the outcome of an otherwise successful deployment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from . import console
from .config import SERVICE_SECTIONS, DeployConfig
from .errors import VerificationWarning
from .models import ServiceEndpoint
from .readiness import tcp_probe
from .runtime import ContainerRuntime
from .stages import service_readiness

logger = logging.getLogger(__name__)


@dataclass
class VerificationReport:
    passed: list[str] = field(default_factory=list)
    warnings: list[VerificationWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings


def _check_container(config: DeployConfig, runtime: ContainerRuntime, key: str) -> str:
    service = config.service(key)
    observed = runtime.inspect_container(service.container_name)
    if observed is None:
        raise VerificationWarning(f"container {service.container_name}", "not found")
    if not observed.running:
        raise VerificationWarning(f"container {service.container_name}", "not running")
    if config.network_name not in observed.networks:
        raise VerificationWarning(
            f"container {service.container_name}",
            f"not attached to network '{config.network_name}' (attached: {', '.join(observed.networks) or 'none'})"
        )
    return f"container {service.container_name} running on {config.network_name}"


def _check_volume(config: DeployConfig, runtime: ContainerRuntime) -> str:
    name = config.database['volume']
    if runtime.inspect_volume(name) is None:
        raise VerificationWarning(f"volume {name}", "not found")
    return f"volume {name} present"


def _check_endpoint(endpoint: ServiceEndpoint, probe: Callable[[ServiceEndpoint], bool]) -> str:
    if not probe(endpoint):
        raise VerificationWarning(f"endpoint {endpoint.name}", f"{endpoint.host}:{endpoint.port} not reachable")
    return f"endpoint {endpoint}"


def verify_deployment(
    config: DeployConfig,
    runtime: ContainerRuntime,
    probe: Callable[[ServiceEndpoint], bool] = tcp_probe,
) -> VerificationReport:
    report = VerificationReport()

    checks: list[tuple[str, Callable[[], str]]] = [("volume", lambda: _check_volume(config, runtime))]
    for key in SERVICE_SECTIONS:
        checks.append((f"{key} container", lambda key=key: _check_container(config, runtime, key)))
    for key in SERVICE_SECTIONS:
        endpoint = service_readiness(key, config.service(key)).endpoint
        checks.append((f"{key} endpoint", lambda endpoint=endpoint: _check_endpoint(endpoint, probe)))

    for name, check in checks:
        try:
            report.passed.append(check())
        except VerificationWarning as w:
            report.warnings.append(w)
        except Exception as e:
            logger.debug(f"Verification check {name} raised", exc_info=True)
            report.warnings.append(VerificationWarning(name, f"check failed unexpectedly: {e}"))

    for item in report.passed:
        console.success(f"✓ {item}")
    for w in report.warnings:
        console.warn(f"Verification: {w}")
    return report
