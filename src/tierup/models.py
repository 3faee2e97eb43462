"""
Deployment data model.

Entities are configuration values and runtime observations, not persistent
domain objects. Stage descriptors are built once per run and never mutated.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from .config_constants import LABEL_SPEC_HASH


@dataclass(frozen=True)
class ServiceEndpoint:
    name: str
    host: str
    port: int
    protocol: str = "tcp"

    def __str__(self) -> str:
        return f"{self.name} ({self.protocol}://{self.host}:{self.port})"


@dataclass(frozen=True)
class Readiness:
    """Readiness gate target with its own budget (startup cost differs per service)."""

    endpoint: ServiceEndpoint
    timeout: float
    poll_interval: float


@dataclass(frozen=True)
class NetworkHandle:
    name: str
    driver: str = "bridge"
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class VolumeHandle:
    name: str
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SourceSpec:
    repo_url: str
    branch: str
    target_dir: Path
    depth: int = 1


@dataclass(frozen=True)
class PortBinding:
    host_port: int
    container_port: int
    host_ip: str = ""

    def to_cli(self) -> str:
        if self.host_ip:
            return f"{self.host_ip}:{self.host_port}:{self.container_port}"
        return f"{self.host_port}:{self.container_port}"


@dataclass(frozen=True)
class ContainerSpec:
    """Declarative description of a single deployable service instance."""

    name: str
    image: str
    network: str
    build_context: Optional[Path] = None
    ports: tuple[PortBinding, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    volumes: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    restart_policy: str = "unless-stopped"
    command: tuple[str, ...] = ()

    def fingerprint(self) -> str:
        """Stable hash of every field that defines the running container."""
        payload = {
            'name': self.name,
            'image': self.image,
            'network': self.network,
            'ports': [p.to_cli() for p in self.ports],
            'env': dict(sorted(self.env.items())),
            'volumes': dict(sorted(self.volumes.items())),
            'labels': dict(sorted(self.labels.items())),
            'restart_policy': self.restart_policy,
            'command': list(self.command),
        }
        encoded = json.dumps(payload, sort_keys=True).encode('utf-8')
        return hashlib.sha256(encoded).hexdigest()[:16]

    def all_labels(self) -> dict[str, str]:
        labels = dict(self.labels)
        labels[LABEL_SPEC_HASH] = self.fingerprint()
        return labels


@dataclass(frozen=True)
class ObservedContainer:
    """What `docker inspect` reports for a container, reduced to what planning needs."""

    name: str
    image_id: str
    running: bool
    labels: dict[str, str] = field(default_factory=dict)
    networks: tuple[str, ...] = ()

    @property
    def spec_hash(self) -> Optional[str]:
        return self.labels.get(LABEL_SPEC_HASH)


@dataclass(frozen=True)
class StageDescriptor:
    name: str
    ordinal: int
    apply: Callable[[Any], None]
    predecessors: tuple[str, ...] = ()
    readiness: Optional[Readiness] = None
    postcondition: Optional[Callable[[Any], bool]] = None
    tags: tuple[str, ...] = ()
    description: str = ""


class StageStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StageOutcome:
    name: str
    status: StageStatus
    reason: str = ""
    error: Optional[BaseException] = None
    duration: float = 0.0


@dataclass
class RunReport:
    outcomes: list[StageOutcome] = field(default_factory=list)
    dry_run: bool = False

    def outcome(self, name: str) -> Optional[StageOutcome]:
        for item in self.outcomes:
            if item.name == name:
                return item
        return None

    @property
    def succeeded(self) -> bool:
        return all(o.status in (StageStatus.APPLIED, StageStatus.SKIPPED) for o in self.outcomes)

    @property
    def cancelled(self) -> bool:
        return any(o.status is StageStatus.CANCELLED for o in self.outcomes)

    @property
    def last_completed(self) -> Optional[str]:
        applied = [o.name for o in self.outcomes if o.status is StageStatus.APPLIED]
        return applied[-1] if applied else None

    @property
    def first_failed(self) -> Optional[StageOutcome]:
        for item in self.outcomes:
            if item.status is StageStatus.FAILED:
                return item
        return None
