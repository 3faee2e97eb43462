#!/usr/bin/env python3
"""Version-control client adapter (git CLI)."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from . import console
from .errors import ResourceApplyFailure
from .models import SourceSpec

logger = logging.getLogger(__name__)


class GitClient:
    def __init__(self, binary: str = "git", dry_run: bool = False) -> None:
        self.binary = binary
        self.dry_run = dry_run

    def _git(self, args: list[str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.binary, *args],
            cwd=cwd,
            capture_output=True,
            text=True,
        )

    def clone(self, source: SourceSpec) -> None:
        cmd = [
            self.binary, 'clone',
            '--branch', source.branch,
            '--single-branch',
        ]
        if source.depth and source.depth > 0:
            cmd += ['--depth', str(source.depth)]
        cmd += [source.repo_url, str(source.target_dir)]

        if self.dry_run:
            console.info(f"[dry-run] {' '.join(cmd)}")
            return

        console.info(f"Cloning {source.repo_url} ({source.branch}) into {source.target_dir}")
        source.target_dir.parent.mkdir(parents=True, exist_ok=True)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError:
            raise ResourceApplyFailure("source tree", f"{self.binary}: command not found", cmd)

        if result.returncode != 0:
            raise ResourceApplyFailure("source tree", result.stderr.strip(), cmd)
        logger.debug(f"Clone complete: {source.target_dir}")

    def remove_tree(self, target_dir: Path) -> None:
        if self.dry_run:
            console.info(f"[dry-run] rm -rf {target_dir}")
            return
        console.info(f"Removing previous checkout: {target_dir}")
        try:
            shutil.rmtree(target_dir)
        except OSError as e:
            raise ResourceApplyFailure("source tree", str(e))

    def head_commit(self, target_dir: Path) -> Optional[str]:
        """Short commit hash of HEAD, or None when not a git checkout."""
        try:
            result = self._git(['rev-parse', '--short=8', 'HEAD'], cwd=target_dir)
        except (FileNotFoundError, NotADirectoryError):
            return None
        return result.stdout.strip() if result.returncode == 0 else None
