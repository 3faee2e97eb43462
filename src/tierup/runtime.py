#!/usr/bin/env python3
"""
Container runtime adapter (docker CLI).

Read operations (inspect, info) always execute. Mutating operations (create,
build, run, rm) are logged and skipped in dry-run mode. Any non-zero exit of a
mutating command raises ResourceApplyFailure carrying the tool's stderr as-is.

Container environment never appears on the command line: `docker run` reads
it from a private (0600) env file that exists only for the duration of the
call, so echoed commands and the process table carry variable names only.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from . import console
from .errors import ResourceApplyFailure
from .models import ContainerSpec, NetworkHandle, ObservedContainer, VolumeHandle

logger = logging.getLogger(__name__)


class ContainerRuntime:
    def __init__(self, binary: str = "docker", dry_run: bool = False, timeout: Optional[float] = None) -> None:
        self.binary = binary
        self.dry_run = dry_run
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Command plumbing
    # ------------------------------------------------------------------

    def _exec(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )

    def _read(self, args: Sequence[str]) -> Optional[subprocess.CompletedProcess]:
        """Run a read-only command; None when the tool itself is missing."""
        try:
            return self._exec(args)
        except FileNotFoundError:
            if self.dry_run:
                return None
            raise ResourceApplyFailure(self.binary, f"{self.binary}: command not found", [self.binary, *args])

    def _mutate(self, resource: str, args: Sequence[str]) -> str:
        cmd = [self.binary, *args]
        if self.dry_run:
            console.info(f"[dry-run] {' '.join(cmd)}")
            return ""

        console.info(f"Running: {' '.join(cmd)}")
        try:
            result = self._exec(args)
        except FileNotFoundError:
            raise ResourceApplyFailure(resource, f"{self.binary}: command not found", cmd)
        except subprocess.TimeoutExpired as e:
            raise ResourceApplyFailure(resource, f"timed out after {e.timeout}s", cmd)

        if result.returncode != 0:
            raise ResourceApplyFailure(resource, (result.stderr or result.stdout or "").strip(), cmd)
        return result.stdout.strip()

    def _inspect_json(self, args: Sequence[str]) -> Optional[dict]:
        result = self._read(args)
        if result is None or result.returncode != 0:
            return None
        try:
            payload = json.loads(result.stdout or "[]")
        except json.JSONDecodeError:
            return None
        if isinstance(payload, list):
            return payload[0] if payload else None
        return payload

    # ------------------------------------------------------------------
    # Daemon
    # ------------------------------------------------------------------

    def is_installed(self) -> bool:
        if shutil.which(self.binary) is None:
            return False
        result = self._read(['--version'])
        return result is not None and result.returncode == 0

    def daemon_info(self) -> None:
        """Raise ResourceApplyFailure unless the daemon answers `docker info`."""
        result = self._read(['info', '--format', '{{.ServerVersion}}'])
        if result is None:
            return
        if result.returncode != 0:
            raise ResourceApplyFailure("container runtime", (result.stderr or "").strip(), [self.binary, 'info'])
        logger.debug(f"Docker server version: {result.stdout.strip()}")

    def daemon_available(self) -> bool:
        result = self._read(['info', '--format', '{{.ServerVersion}}'])
        return result is not None and result.returncode == 0

    # ------------------------------------------------------------------
    # Networks / volumes
    # ------------------------------------------------------------------

    def inspect_network(self, name: str) -> Optional[dict]:
        return self._inspect_json(['network', 'inspect', name])

    def create_network(self, network: NetworkHandle) -> None:
        args = ['network', 'create', '--driver', network.driver]
        for key, value in sorted(network.labels.items()):
            args += ['--label', f"{key}={value}"]
        self._mutate(f"network {network.name}", [*args, network.name])

    def inspect_volume(self, name: str) -> Optional[dict]:
        return self._inspect_json(['volume', 'inspect', name])

    def create_volume(self, volume: VolumeHandle) -> None:
        args = ['volume', 'create']
        for key, value in sorted(volume.labels.items()):
            args += ['--label', f"{key}={value}"]
        self._mutate(f"volume {volume.name}", [*args, volume.name])

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def image_id(self, reference: str) -> Optional[str]:
        payload = self._inspect_json(['image', 'inspect', reference])
        if not payload:
            return None
        return payload.get('Id')

    def pull_image(self, reference: str) -> None:
        self._mutate(f"image {reference}", ['pull', reference])

    def build_image(self, tag: str, context: Path) -> None:
        self._mutate(f"image {tag}", ['build', '-t', tag, str(context)])

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def inspect_container(self, name: str) -> Optional[ObservedContainer]:
        payload = self._inspect_json(['container', 'inspect', name])
        if not payload:
            return None
        state = payload.get('State') or {}
        config = payload.get('Config') or {}
        networks = ((payload.get('NetworkSettings') or {}).get('Networks') or {}).keys()
        return ObservedContainer(
            name=payload.get('Name', name).lstrip('/'),
            image_id=payload.get('Image', ''),
            running=bool(state.get('Running')),
            labels=dict(config.get('Labels') or {}),
            networks=tuple(sorted(networks)),
        )

    def remove_container(self, name: str) -> None:
        self._mutate(f"container {name}", ['rm', '-f', name])

    def start_container(self, name: str) -> None:
        self._mutate(f"container {name}", ['start', name])

    def run_container(self, spec: ContainerSpec) -> None:
        resource = f"container {spec.name}"
        if not spec.env:
            self._mutate(resource, build_run_args(spec))
            return
        if self.dry_run:
            self._mutate(resource, build_run_args(spec, Path(f"<{', '.join(sorted(spec.env))}>")))
            return

        env_path = write_env_file(spec)
        try:
            self._mutate(resource, build_run_args(spec, env_path))
        finally:
            env_path.unlink(missing_ok=True)


def write_env_file(spec: ContainerSpec) -> Path:
    """Write the container environment to a fresh 0600 file in the temp directory."""
    for key, value in spec.env.items():
        if '\n' in value or '\r' in value:
            raise ResourceApplyFailure(
                f"container {spec.name}", f"environment value for {key} contains a line break"
            )

    fd, path = tempfile.mkstemp(prefix=f"tierup-{spec.name}-", suffix=".env")
    with os.fdopen(fd, 'w') as f:
        for key, value in sorted(spec.env.items()):
            f.write(f"{key}={value}\n")
    logger.debug(f"Env file for {spec.name}: {path} ({len(spec.env)} keys)")
    return Path(path)


def build_run_args(spec: ContainerSpec, env_file: Optional[Path] = None) -> list[str]:
    """Translate a ContainerSpec into `docker run` arguments (env only via ``env_file``)."""
    args = ['run', '-d', '--name', spec.name, '--network', spec.network]
    if spec.restart_policy:
        args += ['--restart', spec.restart_policy]
    for port in spec.ports:
        args += ['-p', port.to_cli()]
    for volume, mount_path in sorted(spec.volumes.items()):
        args += ['-v', f"{volume}:{mount_path}"]
    if env_file is not None:
        args += ['--env-file', str(env_file)]
    for key, value in sorted(spec.all_labels().items()):
        args += ['--label', f"{key}={value}"]
    args.append(spec.image)
    args.extend(spec.command)
    return args
