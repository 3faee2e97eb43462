#!/usr/bin/env python3
"""
Deployment orchestration: pipeline run + verification + summary.

Execution order:
    - Stages run in ordinal order (bootstrap, source, network, database, api, frontend)
    - Fail-fast: the first failed stage halts the run; earlier resources stay in place
    - Verification runs only after a complete, non-dry run and never fails it
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from . import console
from .config import DeployConfig
from .models import RunReport, StageStatus
from .readiness import GateResult, wait_for_endpoint
from .sequencer import StageSelector, run
from .stages import StageContext, access_endpoints, build_context, build_pipeline, report_access
from .state import StateLedger
from .verify import VerificationReport, verify_deployment

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    report: RunReport
    verification: Optional[VerificationReport] = None

    @property
    def exit_code(self) -> int:
        if self.report.first_failed is not None:
            return 1
        if self.report.cancelled:
            return 130
        return 0


def deploy(
    config: DeployConfig,
    selector: Optional[StageSelector] = None,
    *,
    dry_run: bool = False,
    verify: bool = True,
    cancel: Optional[threading.Event] = None,
    ctx: Optional[StageContext] = None,
    ledger: Optional[StateLedger] = None,
    gate: Callable[..., GateResult] = wait_for_endpoint,
) -> DeployResult:
    deployment = console.DeploymentContext()
    ctx = ctx or build_context(config, dry_run=dry_run)
    ledger = ledger or StateLedger(config.state_path)
    stages = build_pipeline(config)
    logger.debug(f"State ledger: {ledger.path}")

    console.banner(f"DEPLOY: {config.app_name} (id {deployment.deployment_id}{', dry-run' if dry_run else ''})")

    report = run(
        stages,
        selector,
        ctx=ctx,
        ledger=ledger,
        cancel=cancel,
        dry_run=dry_run,
        gate=gate,
        deployment=deployment,
    )

    frontend = report.outcome('frontend')
    if frontend is not None and frontend.status is StageStatus.APPLIED and not dry_run:
        report_access(config)

    verification = None
    if verify and not dry_run and report.succeeded and not report.cancelled:
        console.banner("VERIFICATION")
        verification = verify_deployment(config, ctx.runtime, ctx.probe)

    result = DeployResult(report, verification)
    print_summary(config, result, deployment, ctx)
    return result


def print_summary(
    config: DeployConfig,
    result: DeployResult,
    deployment: console.DeploymentContext,
    ctx: StageContext,
) -> None:
    report = result.report
    summary = deployment.get_summary()

    console.banner("DEPLOYMENT SUMMARY")
    console.info(f"Deployment ID: {summary['deployment_id']}")
    console.info(f"Duration: {summary['duration_seconds']}s")
    for outcome in report.outcomes:
        suffix = f" ({outcome.reason})" if outcome.reason and outcome.status is not StageStatus.FAILED else ""
        console.info(f"  {outcome.name:<10} {outcome.status.value}{suffix}")
    if ctx.facts.get('source_commit'):
        console.info(f"Source commit: {ctx.facts['source_commit']}")

    failed = report.first_failed
    if failed is not None:
        console.error("DEPLOYMENT FAILED")
        console.error(f"Last completed stage: {report.last_completed or 'none'}")
        console.error(f"First failed stage: {failed.name}")
        console.error(f"Error: {failed.reason}")
        return

    if report.cancelled:
        console.warn("DEPLOYMENT CANCELLED")
        console.warn(f"Last completed stage: {report.last_completed or 'none'}")
        return

    if result.verification is not None and result.verification.warnings:
        console.warn(f"Completed with {len(result.verification.warnings)} verification warning(s)")
    if report.dry_run:
        console.success("DRY RUN COMPLETE (no changes made)")
    else:
        console.success("DEPLOYMENT COMPLETE")
        if report.outcome('frontend') and report.outcome('frontend').status is StageStatus.APPLIED:
            for name, url in access_endpoints(config).items():
                console.info(f"{name}: {url}")
