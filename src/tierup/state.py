#!/usr/bin/env python3
"""Applied-stage ledger persisted to tierup.state.toml."""

from __future__ import annotations

import logging
import tomllib
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def get_timestamp() -> str:
    """
    Get current timestamp in ISO 8601 format (UTC).
    """
    return datetime.now(timezone.utc).isoformat()


class StateLedger:
    """Remember which stages have been applied on this host."""

    def __init__(self, path: Optional[Path]) -> None:
        self.path = path
        self.stages: dict[str, dict] = {}
        if path is not None and path.exists():
            with open(path, 'rb') as f:
                data = tomllib.load(f)
            self.stages = dict(data.get('stages', {}))
            logger.debug(f"Loaded state ledger {path}: {sorted(self.stages)}")

    def was_applied(self, stage: str) -> bool:
        return stage in self.stages

    def mark_applied(self, stage: str, ordinal: int) -> None:
        self.stages[stage] = {'applied_at': get_timestamp(), 'ordinal': ordinal}
        self.save()

    def save(self) -> None:
        if self.path is None:
            return
        import tomli_w

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'wb') as f:
            tomli_w.dump({'stages': self.stages}, f)
