from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

import uvicorn

from . import get_runtime, set_runtime
from .runtime import KeeperRuntime
from ..config import Settings, load_settings
from ..core.dca.models import OrderOutcome
from ..core.recovery.errors import ConfigError
from ..logging_config import bind_keeper_context, setup_logging

logger = logging.getLogger("dca_keeper.run")

EXIT_CONFIG_ERROR = 2


async def _serve(settings: Settings) -> None:
    runtime = get_runtime()
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    server: Optional[uvicorn.Server] = None
    server_task: Optional[asyncio.Task] = None
    if settings.health_server_enabled:
        from ..main import app

        config = uvicorn.Config(
            app,
            host=settings.health_host,
            port=settings.health_port,
            log_level=settings.log_level.lower(),
            log_config=None,
        )
        server = uvicorn.Server(config)
        # Signals are handled here, not by uvicorn.
        server.install_signal_handlers = lambda: None
        server_task = asyncio.create_task(server.serve(), name="health-server")

    await stop_event.wait()
    await runtime.stop()
    if server is not None and server_task is not None:
        server.should_exit = True
        await server_task


async def _once(runtime: KeeperRuntime) -> int:
    try:
        report = await runtime.run_cycle()
    finally:
        await runtime.client.close()
    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0 if not report.count(OrderOutcome.FAILED) else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="dca-keeper", description="Sui DCA keeper")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--dry-run", action="store_true", help="Simulate trades without submitting")
    args = parser.parse_args(argv)

    overrides = {"dry_run": True} if args.dry_run else {}
    try:
        settings = load_settings(**overrides)
        setup_logging(settings.log_level, settings.log_json)
        settings.validate_for_keeper()
    except ConfigError as exc:
        setup_logging("INFO")
        for problem in exc.problems or [str(exc)]:
            logger.error("Configuration error: %s", problem)
        return EXIT_CONFIG_ERROR

    runtime = KeeperRuntime.from_settings(settings)
    set_runtime(runtime)
    bind_keeper_context(
        network=settings.sui_network,
        executor=runtime.submitter.executor_address,
        dry_run=settings.dry_run,
    )

    if args.once:
        return asyncio.run(_once(runtime))
    asyncio.run(_serve(settings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
