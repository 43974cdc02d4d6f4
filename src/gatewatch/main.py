"""Entry point for the Gate.io market mover watcher.

Wires all components together, starts the poll loop, the interactive
command shell and (optionally) the FastAPI dashboard on a single asyncio
event loop, and shuts everything down through one shared stop event.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. ConfigStore (hot-reloaded configuration document)
2. GateIoSource (ccxt async market data)
3. PairMetadataCache, SlidingWindowTracker, ThresholdEngine, RankingAggregator
4. ConsoleNotifier + TelegramNotifier behind NotifierFanout
5. CsvSink (daily ranked-list log)
6. Presenter (dashboard boundary)
7. PollOrchestrator (poll loop)
8. CommandProcessor (interactive shell)
"""

import asyncio
import signal
import sys
from typing import Any

import uvicorn

from gatewatch.commands import CommandProcessor
from gatewatch.config import AppSettings
from gatewatch.config_store import ConfigStore
from gatewatch.dashboard.presenter import Presenter
from gatewatch.exchange.gateio_client import GateIoSource
from gatewatch.logging import get_logger, setup_logging
from gatewatch.market_data.pair_cache import PairMetadataCache
from gatewatch.market_data.ranker import RankingAggregator
from gatewatch.market_data.threshold import ThresholdEngine
from gatewatch.market_data.window import SlidingWindowTracker
from gatewatch.notify.console import ConsoleNotifier
from gatewatch.notify.fanout import NotifierFanout
from gatewatch.notify.telegram import TelegramNotifier
from gatewatch.orchestrator import PollOrchestrator
from gatewatch.storage.csv_sink import CsvSink


def _build_components(settings: AppSettings, stop_event: asyncio.Event) -> dict[str, Any]:
    """Build all watcher components from settings.

    Note: Does NOT start the config watcher or connect the data source --
    that happens in run() once the event loop is running.

    Args:
        settings: Process-level settings.
        stop_event: Shared shutdown signal.

    Returns:
        Dict mapping component names to instances.
    """
    # 1. Configuration document
    config_store = ConfigStore(settings.config_path)
    config = config_store.load()

    def current_config():
        return config_store.current

    # 2. Market data source
    source = GateIoSource(
        base_url_provider=lambda: config_store.current.data_source.base_url,
        timeout_seconds=settings.http.timeout_seconds,
    )

    # 3. Pipeline stages
    pair_cache = PairMetadataCache(refresh_seconds=settings.pair_refresh_seconds)
    tracker = SlidingWindowTracker(
        default_capacity=config.polling.samples_window,
        eager_shrink=config.polling.eager_window_shrink,
    )
    engine = ThresholdEngine(config_store, tracker)
    ranker = RankingAggregator()

    # 4. Notification channels
    console = ConsoleNotifier(current_config)
    telegram = TelegramNotifier(current_config, settings.http)
    fanout = NotifierFanout([console, telegram])

    # 5. CSV log
    csv_sink = CsvSink(settings.csv_dir)

    # 6. Dashboard boundary; the console channel feeds its alert list
    presenter = Presenter()
    console.subscribe(presenter.push_alert)
    if settings.dashboard.enabled:
        presenter.open()

    # 7. Poll loop
    orchestrator = PollOrchestrator(
        config_store=config_store,
        source=source,
        pair_cache=pair_cache,
        engine=engine,
        ranker=ranker,
        fanout=fanout,
        csv_sink=csv_sink,
        presenter=presenter,
    )

    # 8. Command shell
    commands = CommandProcessor(config_store, presenter, stop_event)

    return {
        "config_store": config_store,
        "source": source,
        "pair_cache": pair_cache,
        "engine": engine,
        "ranker": ranker,
        "console": console,
        "telegram": telegram,
        "fanout": fanout,
        "csv_sink": csv_sink,
        "presenter": presenter,
        "orchestrator": orchestrator,
        "commands": commands,
    }


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Register OS signal handlers that trigger graceful shutdown.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("gatewatch.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _graceful_handler)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            pass


async def _serve_dashboard(server: uvicorn.Server, stop_event: asyncio.Event) -> None:
    """Run uvicorn until the stop event asks it to exit."""

    async def _exit_on_stop() -> None:
        await stop_event.wait()
        server.should_exit = True

    watcher = asyncio.create_task(_exit_on_stop())
    try:
        await server.serve()
    finally:
        watcher.cancel()


async def _shutdown(components: dict[str, Any], tasks: list[asyncio.Task]) -> None:
    """Stop the config watcher first, then the loops, then network clients."""
    logger = get_logger("gatewatch.main")

    await components["config_store"].stop()

    for task in tasks:
        if not task.done():
            task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    for name in ("source", "telegram"):
        try:
            await components[name].close()
        except Exception as e:
            logger.error("component_close_failed", component=name, error=str(e))

    logger.info("gatewatch_stopped")


async def run() -> int:
    """Run the watcher until shutdown; returns the process exit status.

    When the dashboard is enabled (DASHBOARD_ENABLED=true, the default),
    uvicorn serves the FastAPI app on the same event loop as the poll loop.
    The interactive shell runs only when stdin is a terminal.
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("gatewatch.main")

    stop_event = asyncio.Event()
    components = _build_components(settings, stop_event)
    _setup_signal_handlers(stop_event)

    await components["config_store"].start()
    await components["source"].connect()

    tasks: list[asyncio.Task] = [
        asyncio.create_task(components["orchestrator"].run(stop_event), name="poll-loop"),
    ]

    if settings.interactive and sys.stdin.isatty():
        tasks.append(
            asyncio.create_task(components["commands"].run(stop_event), name="command-loop")
        )

    if settings.dashboard.enabled:
        from gatewatch.dashboard.app import create_dashboard_app

        app = create_dashboard_app(
            components["config_store"],
            components["presenter"],
            components["orchestrator"],
        )
        config = uvicorn.Config(
            app,
            host=settings.dashboard.host,
            port=settings.dashboard.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        tasks.append(
            asyncio.create_task(_serve_dashboard(uvicorn.Server(config), stop_event), name="dashboard")
        )
        logger.info(
            "starting_with_dashboard",
            host=settings.dashboard.host,
            port=settings.dashboard.port,
        )
    else:
        logger.info("starting_without_dashboard")

    stop_wait = asyncio.create_task(stop_event.wait(), name="stop-wait")
    exit_code = 0
    pending: set[asyncio.Task] = {*tasks, stop_wait}
    try:
        while not stop_event.is_set():
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is stop_wait or task.cancelled():
                    continue
                error = task.exception()
                if error is not None:
                    logger.critical(
                        "fatal_error",
                        task=task.get_name(),
                        error=str(error),
                        exc_info=error,
                    )
                    exit_code = 1
                    stop_event.set()
                elif task.get_name() != "command-loop":
                    # Poll loop or server exited on its own
                    stop_event.set()
    finally:
        stop_event.set()
        stop_wait.cancel()
        await _shutdown(components, tasks)

    return exit_code


def main() -> None:
    """Synchronous entry point."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
