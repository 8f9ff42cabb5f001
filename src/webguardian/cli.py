# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Web Guardian CLI: check, page, block, seed, stats, list, health commands.

Usage:
    python -m webguardian.cli check URL [--tab N]
    python -m webguardian.cli page URL [--title T] [--meta M] [--body B]
    python -m webguardian.cli block DOMAIN_OR_URL
    python -m webguardian.cli seed [FILE]
    python -m webguardian.cli stats
    python -m webguardian.cli list [--verdict SAFE|BLOCK]
    python -m webguardian.cli health

Global flags may also be set through ``WEBGUARDIAN_*`` environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import asdict

from tabulate import tabulate

from . import Decision, EventKind, NavigationEvent, Verdict
from .classifier_client import DEFAULT_BASE_URL, ClassifierConfig
from .errors import WebGuardianError
from .guardian import Guardian, GuardianConfig
from .interceptor import DEFAULT_BLOCK_PAGE, InterceptorConfig
from .logging_config import configure as configure_logging

_TRUTHY = ("1", "true", "yes")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _apply_env_overrides(args: argparse.Namespace) -> argparse.Namespace:
    """Env vars fill in anything not given on the command line."""
    env_url = os.environ.get("WEBGUARDIAN_CLASSIFIER_URL", "").strip()
    if env_url and args.classifier_url is None:
        args.classifier_url = env_url

    env_timeout = os.environ.get("WEBGUARDIAN_CLASSIFIER_TIMEOUT", "").strip()
    if env_timeout and args.timeout is None:
        with suppress(ValueError):
            args.timeout = float(env_timeout)

    env_remote = os.environ.get("WEBGUARDIAN_DISABLE_REMOTE", "").strip().lower()
    args.no_remote = args.no_remote or env_remote in _TRUTHY

    env_db = os.environ.get("WEBGUARDIAN_DB_PATH", "").strip()
    if env_db and not args.db_path:
        args.db_path = env_db

    env_block_page = os.environ.get("WEBGUARDIAN_BLOCK_PAGE", "").strip()
    if env_block_page and args.block_page is None:
        args.block_page = env_block_page

    env_level = os.environ.get("WEBGUARDIAN_LOG_LEVEL", "").strip()
    if env_level and args.log_level is None:
        args.log_level = env_level

    return args


def build_config(args: argparse.Namespace) -> GuardianConfig:
    """Translate parsed arguments into a validated ``GuardianConfig``.

    Raises:
        ValueError: If a value fails config validation.
    """
    classifier = ClassifierConfig(
        base_url=args.classifier_url or DEFAULT_BASE_URL,
        timeout=args.timeout if args.timeout is not None else 5.0,
        enabled=not args.no_remote,
    )
    interceptor = InterceptorConfig(block_page_url=args.block_page or DEFAULT_BLOCK_PAGE)
    return GuardianConfig(classifier=classifier, interceptor=interceptor, db_path=args.db_path or "")


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_decision(decision: Decision, fmt: str) -> None:
    if fmt == "json":
        data = asdict(decision)
        data["action"] = decision.action.value
        data["verdict"] = decision.verdict.value
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return
    print(decision)
    if decision.redirect_url:
        print(f"redirect: {decision.redirect_url}")


def _run(args: argparse.Namespace, body: Callable[[Guardian], Awaitable[int]]) -> int:
    config = build_config(args)

    async def _main() -> int:
        async with Guardian(config) as guardian:
            return await body(guardian)

    return asyncio.run(_main())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_check(args: argparse.Namespace) -> int:
    """Run one top-level navigation through the pipeline."""

    async def body(guardian: Guardian) -> int:
        event = NavigationEvent(tab_id=args.tab, frame_id=0, url=args.url, kind=EventKind.MANUAL)
        decision = await guardian.handle(event)
        _print_decision(decision, args.format)
        return 0

    return _run(args, body)


def cmd_page(args: argparse.Namespace) -> int:
    """In-page re-check with already-extracted title/meta/body text."""

    async def body(guardian: Guardian) -> int:
        decision = await guardian.check_page(
            args.tab,
            args.url,
            title=args.title,
            meta_description=args.meta,
            body_text=args.body,
        )
        _print_decision(decision, args.format)
        return 0

    return _run(args, body)


def cmd_block(args: argparse.Namespace) -> int:
    """Manually cache a domain as BLOCK."""

    async def body(guardian: Guardian) -> int:
        decision = await guardian.block_domain(args.target)
        print(f"Blocked {decision.domain}")
        return 0

    return _run(args, body)


def cmd_seed(args: argparse.Namespace) -> int:
    """Merge a baseline list without overwriting existing verdicts."""

    async def body(guardian: Guardian) -> int:
        added = await guardian.seed_baseline(args.file)
        print(f"Added {added} baseline entr{'y' if added == 1 else 'ies'}")
        return 0

    return _run(args, body)


def cmd_stats(args: argparse.Namespace) -> int:
    async def body(guardian: Guardian) -> int:
        snapshot = await guardian.cache.snapshot()
        blocked = sum(1 for v in snapshot.values() if v is Verdict.BLOCK)
        rows = [["blocked", blocked], ["safe", len(snapshot) - blocked], ["total", len(snapshot)]]
        print(tabulate(rows, headers=["verdicts", "count"], tablefmt="simple"))
        return 0

    return _run(args, body)


def cmd_list(args: argparse.Namespace) -> int:
    async def body(guardian: Guardian) -> int:
        snapshot = await guardian.cache.snapshot()
        rows = [
            [domain, verdict.value]
            for domain, verdict in sorted(snapshot.items())
            if args.verdict is None or verdict.value == args.verdict
        ]
        if not rows:
            print("No cached verdicts.")
            return 0
        print(tabulate(rows, headers=["domain", "verdict"], tablefmt="simple"))
        return 0

    return _run(args, body)


def cmd_health(args: argparse.Namespace) -> int:
    """Probe the remote classifier.  Exit 0 when reachable."""
    if args.no_remote:
        print("Remote classifier disabled", file=sys.stderr)
        return 1

    async def body(guardian: Guardian) -> int:
        online = guardian.classifier_online
        url = args.classifier_url or DEFAULT_BASE_URL
        print(f"{url}: {'reachable' if online else 'unreachable'}")
        return 0 if online else 1

    return _run(args, body)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Web Guardian CLI",
        prog="webguardian",
    )
    parser.add_argument("--db-path", default="", help="SQLite verdict store (default: in-memory)")
    parser.add_argument("--classifier-url", default=None, help=f"Remote classifier base URL (default: {DEFAULT_BASE_URL})")
    parser.add_argument("--timeout", type=float, default=None, help="Remote classifier timeout seconds (default: 5)")
    parser.add_argument("--no-remote", action="store_true", help="Disable the remote classifier tier")
    parser.add_argument("--block-page", default=None, help=f"Block page URL (default: {DEFAULT_BLOCK_PAGE})")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines on stderr")
    parser.add_argument("--log-level", default=None, help="Log level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_check = subparsers.add_parser(
        "check",
        help="Run a URL through the navigation pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  %(prog)s https://mangadex.org/title/1
  %(prog)s "https://www.google.com/search?q=weather" --format json""",
    )
    p_check.add_argument("url", help="Absolute URL of the navigation")
    p_check.add_argument("--tab", type=int, default=1, help="Tab id (default: 1)")
    p_check.add_argument("--format", choices=["text", "json"], default="text")

    p_page = subparsers.add_parser("page", help="In-page re-check with extracted text")
    p_page.add_argument("url")
    p_page.add_argument("--tab", type=int, default=1)
    p_page.add_argument("--title", default="")
    p_page.add_argument("--meta", default="", help="Meta description")
    p_page.add_argument("--body", default="", help="Visible body text")
    p_page.add_argument("--format", choices=["text", "json"], default="text")

    p_block = subparsers.add_parser("block", help="Manually block a domain")
    p_block.add_argument("target", help="Domain or URL")

    p_seed = subparsers.add_parser("seed", help="Merge a SAFE/BLOCK baseline YAML (existing entries win)")
    p_seed.add_argument("file", nargs="?", default=None, help="Baseline YAML (default: packaged SAFE list)")

    subparsers.add_parser("stats", help="Show blocked/total counts")

    p_list = subparsers.add_parser("list", help="List cached verdicts")
    p_list.add_argument("--verdict", choices=[Verdict.SAFE.value, Verdict.BLOCK.value], default=None)

    subparsers.add_parser("health", help="Probe the remote classifier")

    return parser


COMMANDS: dict[str, Callable[[argparse.Namespace], int]] = {
    "check": cmd_check,
    "page": cmd_page,
    "block": cmd_block,
    "seed": cmd_seed,
    "stats": cmd_stats,
    "list": cmd_list,
    "health": cmd_health,
}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = _apply_env_overrides(parser.parse_args(argv))
    configure_logging(json_output=args.json_logs, level=args.log_level or "WARNING")

    try:
        code = COMMANDS[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except (WebGuardianError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
