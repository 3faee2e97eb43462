#!/usr/bin/env python3
"""Shared CLI helpers."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as package_version

from . import __version__


def get_cli_version() -> str:
    """Installed distribution version; the in-tree build version when running from source."""
    try:
        return package_version("tierup")
    except PackageNotFoundError:
        return __version__


def split_csv_args(values: list[str] | None) -> list[str]:
    """Flatten repeated and comma-separated CLI values (``--only a,b --only c``)."""
    items: list[str] = []
    for value in values or []:
        for part in value.split(','):
            part = part.strip()
            if part:
                items.append(part)
    return items
