"""
Chain ingestion CLI entry point.

Run one sync pass against a remote node: find the heights missing from the
local block store, schedule them on the work queue in admission-controlled
chunks, then wait for the queue to drain.

Usage::

    python -m chain_ingest --rpc-url http://127.0.0.1:30003 --database blocks.db
    python -m chain_ingest --config ingest.yaml --api-port 5058
    python -m chain_ingest --batch-size 50 --chunk-size 500 --queue-threshold 20

Options:
    --rpc-url          JSON-RPC endpoint of the remote node
    --database         Path to the SQLite block store
    --config           Path to a YAML configuration file
    --api-port         Serve health, progress and metrics on this port
    --no-wait          Return once scheduling is done instead of draining the queue

Exit codes: 0 on success, 1 on configuration or node errors, 130 when interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Final, Protocol

from chain_ingest.config import SyncConfig, load_config
from chain_ingest.subspecs.api import ApiServer, ApiServerConfig
from chain_ingest.subspecs.queue import AsyncWorkQueue
from chain_ingest.subspecs.rpc import HEIGHT_METHODS, JsonRpcClient
from chain_ingest.subspecs.storage import BlockStore, SQLiteBlockStore
from chain_ingest.subspecs.sync import (
    BackpressureController,
    BatchFetcher,
    BlockSource,
    ChunkPlanner,
    ConfigurationError,
    ConstantBackoff,
    GapDetector,
    HeightSource,
    JobExecutor,
    SyncScheduler,
    TargetHeightUnavailable,
)

EXIT_OK: Final = 0
"""Pass completed and, unless disabled, the queue drained."""

EXIT_ERROR: Final = 1
"""Configuration was invalid or the node height was unavailable."""

EXIT_CANCELLED: Final = 130
"""Interrupted by SIGINT or SIGTERM."""

logger = logging.getLogger(__name__)


class ColoredFormatter(logging.Formatter):
    """Logging formatter with ANSI colors for better readability."""

    # ANSI color codes
    GREY = "\x1b[38;5;244m"
    BLUE = "\x1b[38;5;39m"
    GREEN = "\x1b[38;5;40m"
    YELLOW = "\x1b[38;5;220m"
    RED = "\x1b[38;5;196m"
    BOLD_RED = "\x1b[38;5;196;1m"
    CYAN = "\x1b[38;5;51m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)

        timestamp = f"{self.CYAN}{self.formatTime(record, self.datefmt)}{self.RESET}"
        levelname = f"{color}{record.levelname:8}{self.RESET}"
        name = f"{self.BLUE}{record.name}{self.RESET}"
        message = record.getMessage()

        # Tracebacks are rendered uncolored below the line.
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        return f"{timestamp} {levelname} {name}: {message}"


def setup_logging(verbose: bool = False, no_color: bool = False) -> None:
    """Configure logging for the CLI with optional colors."""
    level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if no_color:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = ColoredFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


class RemoteNode(HeightSource, BlockSource, Protocol):
    """A node that reports its height and serves blocks."""


def build_scheduler(
    config: SyncConfig,
    node: RemoteNode,
    store: BlockStore,
) -> tuple[SyncScheduler, AsyncWorkQueue]:
    """
    Wire the ingestion components for one run.

    The executor both runs queued jobs and re-submits retries to the same
    queue, so the two are connected after construction.

    Returns:
        The scheduler and the (not yet started) work queue it feeds.
    """
    executor = JobExecutor(
        fetcher=BatchFetcher(
            source=node,
            timeout=config.request_timeout,
            max_concurrency=config.max_concurrency,
        ),
        store=store,
        max_attempts=config.max_attempts,
        failure_threshold=config.failure_threshold,
        backoff=ConstantBackoff(config.retry_delay),
    )
    queue = AsyncWorkQueue(executor.execute, workers=config.workers)
    executor.queue = queue

    scheduler = SyncScheduler(
        node=node,
        store=store,
        queue=queue,
        planner=ChunkPlanner(batch_size=config.batch_size, chunk_size=config.chunk_size),
        backpressure=BackpressureController(
            queue=queue,
            threshold=config.queue_threshold,
            poll_interval=config.poll_interval,
            progress_interval=config.progress_interval,
        ),
        detector=GapDetector(limit=config.gap_limit),
        max_gap_size=config.max_gap_size,
    )
    return scheduler, queue


def _install_signal_handlers(cancel: asyncio.Event) -> list[signal.Signals]:
    """Route SIGINT and SIGTERM to the cancellation event."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread.
            continue
        installed.append(sig)
    return installed


async def _wait_for_drain(queue: AsyncWorkQueue, cancel: asyncio.Event) -> bool:
    """
    Wait until the queue is drained or cancellation is requested.

    Returns:
        True if the queue drained, False if cancelled first.
    """
    drain = asyncio.create_task(queue.join())
    cancelled = asyncio.create_task(cancel.wait())
    try:
        await asyncio.wait({drain, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (drain, cancelled):
            task.cancel()
        await asyncio.gather(drain, cancelled, return_exceptions=True)
    return drain.done() and not drain.cancelled()


async def run_sync(
    config: SyncConfig,
    *,
    api_config: ApiServerConfig | None = None,
    wait: bool = True,
    cancel: asyncio.Event | None = None,
    node: RemoteNode | None = None,
    store: BlockStore | None = None,
) -> int:
    """
    Run one sync pass and optionally drain the resulting work.

    Args:
        config: Validated run configuration.
        api_config: Status API settings. No API is served when None.
        wait: Wait for queued jobs to finish before returning.
        cancel: Cancellation signal. SIGINT and SIGTERM set it.
        node: Remote node override. Defaults to a JSON-RPC client for `config.rpc_url`.
        store: Block store override. Defaults to SQLite at `config.database`.

    Returns:
        Process exit code.
    """
    cancel = cancel if cancel is not None else asyncio.Event()
    installed = _install_signal_handlers(cancel)

    client: JsonRpcClient | None = None
    if node is None:
        client = JsonRpcClient(
            config.rpc_url,
            timeout=config.request_timeout,
            connect_timeout=config.connect_timeout,
            height_method=config.height_method,
        )
        node = client
    owned_store = store is None
    if store is None:
        store = SQLiteBlockStore(config.database)

    scheduler, queue = build_scheduler(config, node, store)
    api = (
        ApiServer(config=api_config, progress_getter=lambda: scheduler.get_progress().to_dict())
        if api_config is not None
        else None
    )

    logger.info(
        "Starting sync (node: %s, store: %s, batch size: %d, chunk size: %d, threshold: %d)",
        config.rpc_url,
        config.database,
        config.batch_size,
        config.chunk_size,
        config.queue_threshold,
    )

    try:
        await queue.start()
        if api is not None:
            await api.start()

        try:
            report = await scheduler.run_pass(cancel)
        except TargetHeightUnavailable as exc:
            logger.error("Failed to get current node height: %s", exc)
            return EXIT_ERROR

        if report.cancelled:
            logger.warning("Sync interrupted after %d chunks", report.chunks_admitted)
            return EXIT_CANCELLED

        if wait and report.jobs_submitted:
            logger.info("Waiting for %d queued jobs to finish...", report.jobs_submitted)
            if not await _wait_for_drain(queue, cancel):
                logger.warning("Sync interrupted while draining the queue")
                return EXIT_CANCELLED
            logger.info(
                "Queue drained (%d jobs processed, %d errors)", queue.processed, queue.errors
            )

        return EXIT_OK
    finally:
        if api is not None:
            await api.shutdown()
        await queue.stop()
        if client is not None:
            await client.close()
        if owned_store:
            store.close()
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="chain-ingest",
        description="Backfill a local block store from a remote chain node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--rpc-url",
        type=str,
        default=None,
        help="JSON-RPC endpoint (default: http://$REMOTENODE_ADDR:$REMOTENODE_PORT)",
    )
    parser.add_argument(
        "--database",
        type=str,
        default=None,
        help="Path to the SQLite block store (default: blocks.db)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a YAML configuration file",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Heights fetched per job (default: 100)",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help="Heights admitted to the queue per step (default: 1000)",
    )
    parser.add_argument(
        "--queue-threshold",
        type=int,
        default=None,
        help="Queue depth at which admission waits (default: 100)",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Executions allowed per batch (default: 3)",
    )
    parser.add_argument(
        "--gap-limit",
        type=int,
        default=None,
        help="Maximum gaps scheduled per pass (default: unlimited)",
    )
    parser.add_argument(
        "--max-gap-size",
        type=int,
        default=None,
        help="Skip gaps larger than this; the gap at the chain tip is clamped instead",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Concurrent jobs in the work queue (default: 4)",
    )
    parser.add_argument(
        "--height-method",
        choices=HEIGHT_METHODS,
        default=None,
        help="JSON-RPC method reporting the node height (default: getlatestblockheight)",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=None,
        help="Serve health, progress and metrics endpoints on this port",
    )
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Do not wait for queued jobs to finish",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored logging output",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose, args.no_color)

    try:
        config = load_config(
            args.config,
            rpc_url=args.rpc_url,
            database=args.database,
            batch_size=args.batch_size,
            chunk_size=args.chunk_size,
            queue_threshold=args.queue_threshold,
            max_attempts=args.max_attempts,
            gap_limit=args.gap_limit,
            max_gap_size=args.max_gap_size,
            workers=args.workers,
            height_method=args.height_method,
        )
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_ERROR

    api_config = ApiServerConfig(port=args.api_port) if args.api_port is not None else None

    try:
        return asyncio.run(run_sync(config, api_config=api_config, wait=not args.no_wait))
    except KeyboardInterrupt:
        # Only reachable when no signal handler could be installed.
        logger.info("Shutting down...")
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
