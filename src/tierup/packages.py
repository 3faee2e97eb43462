#!/usr/bin/env python3
"""Host package manager adapter (apt-get / dnf / yum)."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from typing import Sequence

from . import console
from .errors import ResourceApplyFailure

logger = logging.getLogger(__name__)


INSTALL_COMMANDS = {
    'apt-get': ['apt-get', 'install', '-y', '--no-install-recommends'],
    'dnf': ['dnf', 'install', '-y'],
    'yum': ['yum', 'install', '-y'],
}

UPDATE_COMMANDS = {
    'apt-get': ['apt-get', 'update'],
}


class PackageManager:
    def __init__(self, manager: str = "apt-get", dry_run: bool = False) -> None:
        if manager not in INSTALL_COMMANDS:
            raise ValueError(
                f"Unsupported package manager '{manager}' (supported: {', '.join(sorted(INSTALL_COMMANDS))})"
            )
        self.manager = manager
        self.dry_run = dry_run
        self._cache_updated = False

    @staticmethod
    def is_available(command: str) -> bool:
        return shutil.which(command) is not None

    def _run(self, cmd: list[str]) -> None:
        if self.dry_run:
            console.info(f"[dry-run] {' '.join(cmd)}")
            return

        console.info(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, env=_noninteractive_env())
        except FileNotFoundError:
            raise ResourceApplyFailure("packages", f"{cmd[0]}: command not found", cmd)
        if result.returncode != 0:
            raise ResourceApplyFailure("packages", result.stderr.strip(), cmd)

    def install(self, packages: Sequence[str]) -> None:
        """Install packages; refresh the package index once per run first."""
        if not packages:
            return
        logger.debug(f"Installing via {self.manager}: {', '.join(packages)}")
        update = UPDATE_COMMANDS.get(self.manager)
        if update and not self._cache_updated:
            self._run(list(update))
            self._cache_updated = True
        self._run([*INSTALL_COMMANDS[self.manager], *packages])


def _noninteractive_env() -> dict:
    env = os.environ.copy()
    env['DEBIAN_FRONTEND'] = 'noninteractive'
    return env
