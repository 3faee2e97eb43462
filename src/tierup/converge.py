#!/usr/bin/env python3
"""
Idempotent resource applier.

Every resource kind follows the same shape:
1. observe current state through the runtime
2. plan: pure function (observed, desired) -> Action
3. act on the delta only (create / replace / start / no-op)

Planners never touch external tools and are unit-testable in isolation.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from . import console
from .errors import ResourceApplyFailure
from .models import ContainerSpec, NetworkHandle, ObservedContainer, SourceSpec, VolumeHandle
from .runtime import ContainerRuntime
from .vcs import GitClient

logger = logging.getLogger(__name__)


class Action(str, Enum):
    NOOP = "noop"
    CREATE = "create"
    REPLACE = "replace"
    START = "start"
    CLONE = "clone"
    CONFLICT = "conflict"


# ============================================================================
# Planners (pure)
# ============================================================================


def plan_network(observed: Optional[dict], desired: NetworkHandle) -> Action:
    if observed is None:
        return Action.CREATE
    if observed.get('Driver', desired.driver) != desired.driver:
        return Action.CONFLICT
    return Action.NOOP


def plan_volume(observed: Optional[dict], desired: VolumeHandle) -> Action:
    # Volumes are never destroyed by an apply, whatever their labels say.
    return Action.CREATE if observed is None else Action.NOOP


def plan_source_tree(exists: bool, desired: SourceSpec) -> Action:
    return Action.REPLACE if exists else Action.CLONE


def plan_container(
    observed: Optional[ObservedContainer],
    desired: ContainerSpec,
    desired_image_id: Optional[str],
) -> Action:
    if observed is None:
        return Action.CREATE
    if observed.spec_hash != desired.fingerprint():
        return Action.REPLACE
    if desired_image_id is None or observed.image_id != desired_image_id:
        return Action.REPLACE
    if not observed.running:
        return Action.START
    return Action.NOOP


# ============================================================================
# Appliers
# ============================================================================


def ensure_network(runtime: ContainerRuntime, network: NetworkHandle) -> Action:
    action = plan_network(runtime.inspect_network(network.name), network)
    if action is Action.CREATE:
        runtime.create_network(network)
        console.success(f"Network '{network.name}' created")
    elif action is Action.CONFLICT:
        raise ResourceApplyFailure(
            f"network {network.name}",
            f"network exists with a different driver (expected '{network.driver}'); "
            f"remove it with: docker network rm {network.name}"
        )
    else:
        console.success(f"Network '{network.name}' already exists")
    return action


def ensure_volume(runtime: ContainerRuntime, volume: VolumeHandle) -> Action:
    action = plan_volume(runtime.inspect_volume(volume.name), volume)
    if action is Action.CREATE:
        runtime.create_volume(volume)
        console.success(f"Volume '{volume.name}' created")
    else:
        console.success(f"Volume '{volume.name}' already exists")
    return action


def ensure_source_tree(git: GitClient, source: SourceSpec) -> Action:
    """Reproducible checkout: an existing tree is removed entirely, never updated in place."""
    target: Path = source.target_dir
    action = plan_source_tree(target.exists(), source)
    if action is Action.REPLACE:
        git.remove_tree(target)
    git.clone(source)
    console.success(f"Source ready at {target} ({source.branch})")
    return action


def ensure_image(runtime: ContainerRuntime, reference: str, build_context: Optional[Path] = None) -> Optional[str]:
    """
    Build (when a context is given) or pull (when absent locally); return the image id.
    """
    if build_context is not None:
        if not runtime.dry_run and not build_context.is_dir():
            raise ResourceApplyFailure(f"image {reference}", f"build context not found: {build_context}")
        runtime.build_image(reference, build_context)
    elif runtime.image_id(reference) is None:
        runtime.pull_image(reference)

    image_id = runtime.image_id(reference)
    logger.debug(f"Image {reference} -> {image_id}")
    return image_id


def ensure_container(runtime: ContainerRuntime, spec: ContainerSpec, image_id: Optional[str]) -> Action:
    observed = runtime.inspect_container(spec.name)
    action = plan_container(observed, spec, image_id)
    logger.debug(f"Container {spec.name}: {action.value} (spec {spec.fingerprint()})")

    if action is Action.NOOP:
        console.success(f"Container '{spec.name}' up to date")
    elif action is Action.START:
        runtime.start_container(spec.name)
        console.success(f"Container '{spec.name}' started")
    elif action is Action.REPLACE:
        runtime.remove_container(spec.name)
        runtime.run_container(spec)
        console.success(f"Container '{spec.name}' replaced")
    else:
        runtime.run_container(spec)
        console.success(f"Container '{spec.name}' created")
    return action
