"""CLI entry point for nostrsearch.

Runs a single search (``search``) or an interactive loop (``shell``) where
every input line supersedes the search in flight. Setting ``PRIVATE_KEY``
(or passing ``--pubkey``) logs a user in, which enables the self and
followed ranking tiers, the user's preferred relays and ``--mine``.

Examples:
    ```bash
    python -m nostrsearch search bitcoin
    python -m nostrsearch search "lightning wallet" --sort oldest --timeout 5
    python -m nostrsearch search zaps --mine --pubkey npub1...
    python -m nostrsearch --config config/nostrsearch.yaml shell
    ```
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from nostr_sdk import NostrSdkError
from pydantic import ValidationError

from nostrsearch.core.exceptions import NostrSearchError
from nostrsearch.core.logger import Logger, StructuredFormatter
from nostrsearch.core.metrics import MetricsServer
from nostrsearch.core.yaml import load_yaml
from nostrsearch.models import SearchResult, SessionState, SortMode
from nostrsearch.services import EngineConfig, SearchEngine
from nostrsearch.utils.keys import PublicKeySigner


DEFAULT_CONFIG = Path("config") / "nostrsearch.yaml"
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NO_CONNECTIVITY = 2

logger = Logger("cli")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="nostrsearch",
        description="Web-of-trust full-text search over Nostr relays",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Engine config path (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--pubkey",
        help="Log in read-only as this npub1/hex public key (default: PRIVATE_KEY env)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    search = commands.add_parser("search", help="Run one search and print the results")
    search.add_argument("query", nargs="+", help="Search text")
    search.add_argument("--json", action="store_true", help="Print results as JSON")

    shell = commands.add_parser("shell", help="Read one query per line; each line supersedes")
    shell.add_argument("--json", action="store_true", help="Print results as JSON")

    for sub in (search, shell):
        sub.add_argument(
            "--sort",
            choices=[m.value for m in SortMode],
            default=SortMode.RECENT.value,
            help="Order inside a trust tier (default: recent)",
        )
        sub.add_argument("--mine", action="store_true", help="Only the logged-in user's notes")
        sub.add_argument("--timeout", type=float, help="Search deadline in seconds")

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Configure the root logger with structured formatting.

    Installs a ``StructuredFormatter`` on a stderr handler so that output
    from both ``Logger`` and plain ``logging.getLogger()`` calls is unified
    as ``level name message key=value ...`` and never mixes with results on
    stdout.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def load_config(path: Path, timeout: float | None = None) -> EngineConfig:
    """Load the engine config, falling back to defaults if *path* is missing.

    Raises:
        ConfigurationError: If the file is not a YAML mapping.
        pydantic.ValidationError: If a value is out of range.
    """
    data: dict[str, Any] = {}
    if path.exists():
        data = load_yaml(path)
    elif path != DEFAULT_CONFIG:
        logger.warning("config_not_found", path=str(path))
    if timeout is not None:
        data.setdefault("search", {})["timeout"] = timeout
    return EngineConfig.model_validate(data)


# =============================================================================
# Output
# =============================================================================


def result_to_dict(result: SearchResult) -> dict[str, Any]:
    """JSON-ready view of a result."""
    items = []
    for item in result.items:
        profile = result.profiles.get(item.author_key)
        items.append(
            {
                "id": item.id,
                "pubkey": item.author_key,
                "created_at": item.created_at,
                "kind": item.kind,
                "content": item.content,
                "tags": [list(t) for t in item.tags],
                "author": profile.best_name if profile is not None and profile.found else None,
            }
        )
    return {
        "generation": result.generation,
        "query": result.query.text if result.query is not None else None,
        "outcome": result.outcome.value,
        "total": result.total,
        "failed_relays": list(result.failed_relays),
        "duration": round(result.duration, 3),
        "items": items,
    }


def format_result(result: SearchResult) -> str:
    """Human-readable rendering, one note per block."""
    lines = []
    for item in result.items:
        profile = result.profiles.get(item.author_key)
        name = profile.best_name if profile is not None and profile.best_name else None
        when = datetime.fromtimestamp(item.created_at, UTC).strftime("%Y-%m-%d %H:%M")
        lines.append(f"{when}  {name or item.author_key[:12]}")
        lines.extend(f"    {line}" for line in item.content.splitlines() or [""])
    summary = f"-- {result.outcome.value}: {len(result.items)} shown, {result.total} found"
    if result.failed_relays:
        summary += f", {len(result.failed_relays)} relays failed"
    lines.append(summary)
    return "\n".join(lines)


def print_result(result: SearchResult, *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result_to_dict(result), ensure_ascii=False))
    else:
        print(format_result(result))


# =============================================================================
# Commands
# =============================================================================


async def run_search(engine: SearchEngine, args: argparse.Namespace) -> int:
    """Run a single search. Exit code 2 means no relay could be reached."""
    result = await engine.start_search(
        " ".join(args.query), sort_mode=args.sort, scope_to_self=args.mine
    )
    print_result(result, as_json=args.json)
    return EXIT_NO_CONNECTIVITY if result.outcome == SessionState.NO_CONNECTIVITY else EXIT_OK


async def run_shell(engine: SearchEngine, args: argparse.Namespace) -> int:
    """Read queries from stdin until EOF or a shutdown signal."""
    metrics_config = engine.config.metrics
    metrics_server = MetricsServer(metrics_config)
    await metrics_server.start()
    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    shutdown = asyncio.Event()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    tasks: set[asyncio.Task[SearchResult]] = set()

    def on_done(task: asyncio.Task[SearchResult]) -> None:
        tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("search_failed", error=str(error))
            return
        result = task.result()
        if result.outcome != SessionState.CANCELLED:
            print_result(result, as_json=args.json)

    try:
        while not shutdown.is_set():
            reader = asyncio.ensure_future(asyncio.to_thread(sys.stdin.readline))
            stopper = asyncio.ensure_future(shutdown.wait())
            await asyncio.wait({reader, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()
            if not reader.done():
                break
            line = reader.result()
            if not line:
                break
            task = asyncio.create_task(
                engine.start_search(line.strip(), sort_mode=args.sort, scope_to_self=args.mine)
            )
            tasks.add(task)
            task.add_done_callback(on_done)
        if shutdown.is_set():
            engine.stop_search()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return EXIT_OK
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


async def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args, build the engine, run the command."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_config(args.config, args.timeout)
        signer = PublicKeySigner(args.pubkey) if args.pubkey else None
        engine = await SearchEngine.create(signer, config=config)
    except (NostrSearchError, ValidationError, NostrSdkError, ValueError) as e:
        logger.error("startup_failed", error=str(e))
        return EXIT_FAILURE

    try:
        async with engine:
            if args.command == "search":
                return await run_search(engine, args)
            return await run_shell(engine, args)
    except NostrSearchError as e:
        logger.error(f"{args.command}_failed", error=str(e))
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
