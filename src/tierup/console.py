#!/usr/bin/env python3
"""
Operator-facing output and logging setup.

Progress lines go to stdout with colored level prefixes; module internals log
through the standard ``logging`` module (DEBUG for tracing).
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import TypedDict

# Color codes for output
BLUE = '\033[94m'
GREEN = '\033[92m'
YELLOW = '\033[93m'
RED = '\033[91m'
RESET = '\033[0m'

logger = logging.getLogger(__name__)


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure logging module with specified level.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR
    }

    level = level_map.get(log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        force=True  # Reconfigure if already configured
    )
    logging.getLogger('tierup').setLevel(level)

    if level == logging.DEBUG:
        logger.debug(f"Logging configured: {log_level.upper()} (comprehensive tracing enabled)")


class DeploymentSummary(TypedDict):
    deployment_id: str
    duration_seconds: int
    stages_applied: int
    stages_failed: int


class DeploymentContext:
    """Track deployment progress for reporting and error handling."""

    def __init__(self) -> None:
        self.deployment_id = uuid.uuid4().hex[:8]
        self.start_time = time.time()
        self.current_stage: str | None = None
        self.stages_applied: list[str] = []
        self.stages_failed: list[str] = []

    def set_stage(self, stage_name: str) -> None:
        self.current_stage = stage_name

    def record_success(self, stage_name: str) -> None:
        if stage_name not in self.stages_applied:
            self.stages_applied.append(stage_name)

    def record_failure(self, stage_name: str) -> None:
        if stage_name not in self.stages_failed:
            self.stages_failed.append(stage_name)

    def get_summary(self) -> DeploymentSummary:
        return {
            'deployment_id': self.deployment_id,
            'duration_seconds': int(time.time() - self.start_time),
            'stages_applied': len(self.stages_applied),
            'stages_failed': len(self.stages_failed),
        }


def _emit(prefix: str, msg: str, context: dict) -> None:
    print(f"{prefix} {msg}", flush=True)
    for key, value in context.items():
        print(f"  {key}: {value}", flush=True)


def info(msg, **context):
    """Print info message with optional structured context."""
    _emit(f"{BLUE}[INFO]{RESET}", msg, context)


def success(msg, **context):
    _emit(f"{GREEN}[SUCCESS]{RESET}", msg, context)


def warn(msg, **context):
    _emit(f"{YELLOW}[WARN]{RESET}", msg, context)


def error(msg, **context):
    """Print error message with optional structured context (does not exit)."""
    _emit(f"{RED}[ERROR]{RESET}", msg, context)


def banner(title: str, char: str = "=") -> None:
    print("\n" + char * 70, flush=True)
    print(f"{GREEN}{title}{RESET}", flush=True)
    print(char * 70, flush=True)
