#!/usr/bin/env python3
"""
tierup CLI entry point.

Exit codes:
    0    all selected stages applied (verification warnings do not count)
    1    a stage failed (precondition, resource apply, readiness timeout)
    2    configuration or selector error (nothing was run)
    130  cancelled by operator
"""

from __future__ import annotations

import argparse
import json
import signal
import threading
from pathlib import Path
from typing import Optional

from . import console
from .cli_utils import get_cli_version, split_csv_args
from .config import load_config, mask_secrets
from .deploy import deploy
from .errors import ConfigError, SelectorError
from .sequencer import StageSelector
from .stages import build_pipeline


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments for tierup-deploy.

    Supports arguments:
    1. -d, --dir <path> - Deployment directory holding tierup.defaults.toml.j2
    2. --only <stage-or-tag> - Run only these stages (repeatable, comma-separated)
    3. --skip <stage-or-tag> - Never run these stages (repeatable, comma-separated)
    4. --with-predecessors - Expand --only to include every predecessor stage
    5. --dry-run - Print mutating commands instead of executing them
    6. --no-verify - Skip post-deploy verification
    7. --list-stages - Print stages and tags, then exit
    8. --print-context - Print merged config as JSON (secrets masked), then exit
    9. --log-level <level> - DEBUG, INFO, WARNING, ERROR
    """
    parser = argparse.ArgumentParser(
        prog='tierup-deploy',
        description='tierup: ordered three-tier deployment with readiness gates',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Stages (in order): bootstrap, source, network, database, api, frontend

Examples:
  # Full deployment from the current directory
  %(prog)s

  # Preview without changing anything
  %(prog)s --dry-run

  # Redeploy the API only (database must already be up)
  %(prog)s --only api

  # Redeploy the API and everything it depends on
  %(prog)s --only api --with-predecessors

  # Everything except host bootstrap
  %(prog)s --skip bootstrap
        '''
    )

    parser.add_argument(
        '-d', '--dir',
        type=Path,
        default=Path.cwd(),
        metavar='PATH',
        help='Deployment directory (default: current directory)'
    )

    parser.add_argument(
        '--only',
        action='append',
        default=[],
        metavar='STAGE_OR_TAG',
        help='Run only these stages/tags (repeatable, comma-separated)'
    )

    parser.add_argument(
        '--skip',
        action='append',
        default=[],
        metavar='STAGE_OR_TAG',
        help='Skip these stages/tags (repeatable, comma-separated)'
    )

    parser.add_argument(
        '--with-predecessors',
        action='store_true',
        help='Include all predecessor stages of --only selections'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print mutating commands instead of executing them'
    )

    parser.add_argument(
        '--no-verify',
        action='store_true',
        help='Skip post-deploy verification'
    )

    parser.add_argument(
        '--list-stages',
        action='store_true',
        help='List stages with tags and predecessors, then exit'
    )

    parser.add_argument(
        '--print-context',
        action='store_true',
        help='Print merged configuration as JSON (secrets masked), then exit'
    )

    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        type=str.upper,
        help='Log level (default: INFO)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {get_cli_version()}'
    )

    return parser.parse_args(argv)


def list_stages(config) -> None:
    print("\n" + "=" * 70)
    print("DEPLOYMENT STAGES")
    print("=" * 70)
    for stage in build_pipeline(config):
        print(f"\n{console.BLUE}{stage.ordinal}. {stage.name}{console.RESET}")
        print(f"  Description: {stage.description}")
        print(f"  Tags: {', '.join(stage.tags) or '-'}")
        print(f"  Predecessors: {', '.join(stage.predecessors) or '-'}")
        if stage.readiness is not None:
            r = stage.readiness
            print(f"  Readiness: {r.endpoint.host}:{r.endpoint.port} "
                  f"(timeout {r.timeout:g}s, poll {r.poll_interval:g}s)")
    print("")


def install_cancel_handler(cancel: threading.Event) -> None:
    """First SIGINT requests cancellation between stages; a second one interrupts."""

    def _handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        console.warn("Interrupt received: finishing the current stage, then stopping (Ctrl-C again to abort)")

    signal.signal(signal.SIGINT, _handler)


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)
    console.configure_logging(args.log_level)

    try:
        config = load_config(args.dir)
    except (ConfigError, FileNotFoundError) as e:
        console.error(f"Configuration error: {e}")
        return 2

    if args.print_context:
        print(json.dumps(mask_secrets(config.raw), indent=2, default=str))
        return 0

    if args.list_stages:
        list_stages(config)
        return 0

    selector = StageSelector(
        only=split_csv_args(args.only),
        skip=split_csv_args(args.skip),
        include_predecessors=args.with_predecessors,
    )
    try:
        selector.resolve(build_pipeline(config))
    except SelectorError as e:
        console.error(str(e))
        return 2

    cancel = threading.Event()
    install_cancel_handler(cancel)

    try:
        result = deploy(
            config,
            selector,
            dry_run=args.dry_run,
            verify=not args.no_verify,
            cancel=cancel,
        )
    except KeyboardInterrupt:
        console.warn("Aborted by operator")
        return 130

    return result.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
