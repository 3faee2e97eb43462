#!/usr/bin/env python3
"""
Stage sequencer.

Runs stage descriptors in ascending ordinal order with these rules:
- A selector (names or tags, optional predecessor closure) decides what runs
- Before a selected stage applies anything, every predecessor must either have
  been applied earlier in this run, or be recorded as applied AND still hold
  (postcondition re-observed). Otherwise: PreconditionUnmet
- After apply, the stage's readiness gate must report READY. Otherwise:
  ReadinessTimeout
- First failure halts the run; no rollback, no internal retry
- Cancellation is honored between stages only
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Sequence

from . import console
from .errors import DeployError, PreconditionUnmet, ReadinessTimeout, SelectorError
from .models import RunReport, StageDescriptor, StageOutcome, StageStatus
from .readiness import GateResult, wait_for_endpoint
from .state import StateLedger

logger = logging.getLogger(__name__)


@dataclass
class StageSelector:
    """
    Choose which stages run.

    ``only`` and ``skip`` take stage names or tags. Empty ``only`` means all
    stages. ``include_predecessors`` adds the predecessor closure of ``only``.
    ``skip`` always wins.
    """

    only: Sequence[str] = field(default_factory=list)
    skip: Sequence[str] = field(default_factory=list)
    include_predecessors: bool = False

    def resolve(self, stages: Sequence[StageDescriptor]) -> set[str]:
        all_names = {stage.name for stage in stages}
        if self.only:
            selected = _match(stages, self.only, '--only')
            if self.include_predecessors:
                selected = predecessor_closure(stages, selected)
        else:
            selected = set(all_names)

        if self.skip:
            selected -= _match(stages, self.skip, '--skip')
        return selected


def _match(stages: Sequence[StageDescriptor], tokens: Iterable[str], option: str) -> set[str]:
    matched: set[str] = set()
    for token in tokens:
        key = token.strip().lower()
        hits = {stage.name for stage in stages if stage.name == key or key in stage.tags}
        if not hits:
            available = ', '.join(stage.name for stage in sorted(stages, key=lambda s: s.ordinal))
            raise SelectorError(f"Unknown stage or tag for {option}: '{token}' (stages: {available})")
        matched |= hits
    return matched


def predecessor_closure(stages: Sequence[StageDescriptor], names: Iterable[str]) -> set[str]:
    by_name = {stage.name: stage for stage in stages}
    result: set[str] = set()
    pending = list(names)
    while pending:
        name = pending.pop()
        if name in result:
            continue
        result.add(name)
        pending.extend(by_name[name].predecessors)
    return result


def validate_stages(stages: Sequence[StageDescriptor]) -> list[StageDescriptor]:
    """Sort by ordinal and check the predecessor graph points backwards only."""
    ordered = sorted(stages, key=lambda s: s.ordinal)
    seen: set[str] = set()
    ordinals: set[int] = set()
    for stage in ordered:
        if stage.ordinal in ordinals:
            raise ValueError(f"Duplicate stage ordinal {stage.ordinal} ({stage.name})")
        ordinals.add(stage.ordinal)
        for predecessor in stage.predecessors:
            if predecessor not in seen:
                raise ValueError(
                    f"Stage '{stage.name}' depends on '{predecessor}', which is unknown or ordered later"
                )
        seen.add(stage.name)
    return ordered


def check_preconditions(
    stage: StageDescriptor,
    by_name: dict[str, StageDescriptor],
    applied_this_run: set[str],
    ledger: StateLedger,
    ctx: Any,
) -> None:
    for predecessor_name in stage.predecessors:
        if predecessor_name in applied_this_run:
            continue

        predecessor = by_name[predecessor_name]
        if not ledger.was_applied(predecessor_name):
            raise PreconditionUnmet(stage.name, predecessor_name, "was skipped and never previously applied")

        if predecessor.postcondition is None:
            continue
        try:
            holds = predecessor.postcondition(ctx)
        except Exception as e:
            raise PreconditionUnmet(
                stage.name, predecessor_name, f"could not be re-checked: {e}"
            ) from e
        if not holds:
            raise PreconditionUnmet(
                stage.name, predecessor_name, "was previously applied but its effects are no longer in place"
            )
        logger.debug(f"Precondition {predecessor_name} re-observed for {stage.name}")


def run(
    stages: Sequence[StageDescriptor],
    selector: Optional[StageSelector] = None,
    *,
    ctx: Any = None,
    ledger: Optional[StateLedger] = None,
    gate: Callable[..., GateResult] = wait_for_endpoint,
    cancel: Optional[threading.Event] = None,
    dry_run: bool = False,
    deployment: Optional[console.DeploymentContext] = None,
) -> RunReport:
    """
    Run ``stages`` in ordinal order; return one outcome per stage reached.
    """
    ordered = validate_stages(stages)
    by_name = {stage.name: stage for stage in ordered}
    selected = (selector or StageSelector()).resolve(ordered)
    ledger = ledger or StateLedger(None)
    deployment = deployment or console.DeploymentContext()

    report = RunReport(dry_run=dry_run)
    applied_this_run: set[str] = set()

    logger.debug(f"Selected stages: {sorted(selected, key=lambda n: by_name[n].ordinal)}")

    for index, stage in enumerate(ordered):
        if cancel is not None and cancel.is_set():
            for remaining in ordered[index:]:
                if remaining.name in selected:
                    report.outcomes.append(
                        StageOutcome(remaining.name, StageStatus.CANCELLED, "cancelled by operator")
                    )
            console.warn("Cancellation requested; remaining stages not started")
            break

        if stage.name not in selected:
            report.outcomes.append(StageOutcome(stage.name, StageStatus.SKIPPED, "not selected"))
            logger.debug(f"Skipping stage {stage.name}")
            continue

        console.banner(f"### STAGE {stage.ordinal}: {stage.name} ###", char="#")
        if stage.description:
            console.info(stage.description)

        deployment.set_stage(stage.name)
        started = time.monotonic()
        try:
            check_preconditions(stage, by_name, applied_this_run, ledger, ctx)
            stage.apply(ctx)

            if stage.readiness is not None:
                if dry_run:
                    console.info(f"[dry-run] would wait for {stage.readiness.endpoint}")
                else:
                    result = gate(
                        stage.readiness.endpoint,
                        stage.readiness.poll_interval,
                        stage.readiness.timeout,
                    )
                    if not result.ready:
                        raise ReadinessTimeout(
                            str(stage.readiness.endpoint), stage.readiness.timeout, result.attempts
                        )
        except DeployError as e:
            duration = time.monotonic() - started
            deployment.record_failure(stage.name)
            report.outcomes.append(StageOutcome(stage.name, StageStatus.FAILED, str(e), e, duration))
            console.error(f"Stage '{stage.name}' failed", error=e)
            break

        duration = time.monotonic() - started
        applied_this_run.add(stage.name)
        deployment.record_success(stage.name)
        if not dry_run:
            ledger.mark_applied(stage.name, stage.ordinal)
        report.outcomes.append(StageOutcome(stage.name, StageStatus.APPLIED, "", None, duration))
        console.success(f"✓ COMPLETED: {stage.name} ({duration:.1f}s)")

    return report
