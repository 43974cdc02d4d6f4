"""Interactive command shell for editing the configuration at runtime.

Every mutation goes through ConfigStore.save(), so a command has exactly
the same effect as editing the JSON file by hand: the change is persisted
atomically and picked up by the next poll cycle.
"""

import asyncio
import json
import math
import shlex
import sys

from gatewatch.config import WatcherConfig
from gatewatch.config_store import ConfigStore, Mutation
from gatewatch.dashboard.presenter import Presenter
from gatewatch.exceptions import CommandError, WatcherError
from gatewatch.logging import get_logger

logger = get_logger(__name__)

DEFAULT_NEW_SINCE_DAYS = 30

HELP_TEXT = """\
Commands:
  help                          Show this help
  config show                   Print current configuration
  config set increase <pct>     Set increase threshold percent (e.g., 20)
  config set decrease <pct>     Set decrease threshold percent (e.g., 20)
  config set interval <sec>     Set polling interval seconds (>=1, default 5)
  config set lookback <sec>     Set lookback horizon in seconds (default 20)
  config set window <n>         Set samples window size (>=2); auto-raised to lookback steps + 1
  config set telegram.enabled <true|false>
  config set telegram.token <token>
  config set telegram.chatid <id>

  config include <PAIR...>      Track only these pairs; empty => all
  config exclude <PAIR...>      Exclude these pairs

  filter quotes <QUOTE...>      Only pairs with these quote currencies (e.g., USDT USDC); empty => any
  filter minqv <num>            Only pairs with 24h quote volume >= num
  filter minbv <num>            Only pairs with 24h base volume >= num
  filter new <true|false> [d]   Recently listed pairs only (within d days; default 30)

  ui open                       Start pushing updates to the dashboard
  ui close                      Stop pushing updates; print tables to the log instead
  ui toggle                     Toggle the dashboard

  quit                          Exit"""


def parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise CommandError("Value must be a number") from None
    if not math.isfinite(parsed):
        raise CommandError("Value must be a finite number")
    return parsed


def _parse_int(value: str, minimum: int) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise CommandError(f"Value must be an integer >= {minimum}") from None
    if parsed < minimum:
        raise CommandError(f"Value must be an integer >= {minimum}")
    return parsed


def _setter(key: str, value: str) -> Mutation:
    """Build the mutation for one ``config set`` key."""
    key = key.strip().lower()

    if key == "increase":
        pct = _parse_float(value)
        return lambda c: setattr(c.thresholds, "increase_percent", pct)
    if key == "decrease":
        pct = _parse_float(value)
        return lambda c: setattr(c.thresholds, "decrease_percent", pct)
    if key in ("interval", "pollinterval", "interval_seconds"):
        seconds = _parse_int(value, 1)
        return lambda c: setattr(c.polling, "interval_seconds", seconds)
    if key in ("lookback", "lookback_seconds"):
        seconds = _parse_int(value, 1)
        return lambda c: setattr(c.polling, "lookback_seconds", seconds)
    if key in ("window", "samples_window"):
        size = _parse_int(value, 2)
        return lambda c: setattr(c.polling, "samples_window", size)
    if key == "telegram.enabled":
        enabled = parse_bool(value)
        return lambda c: setattr(c.notifications.telegram, "enabled", enabled)
    if key == "telegram.token":
        return lambda c: setattr(c.notifications.telegram, "bot_token", value.strip())
    if key == "telegram.chatid":
        return lambda c: setattr(c.notifications.telegram, "chat_id", value.strip())

    raise CommandError(f"Unknown key: {key}")


def apply_setting(config_store: ConfigStore, key: str, value: str) -> WatcherConfig:
    """Apply one ``config set`` key through the store and return the new snapshot.

    Raises:
        CommandError: Unknown key or unparseable value.
        ConfigValidationError: The value parsed but the document rejected it.
    """
    return config_store.save(_setter(key, value))


def split_args(line: str) -> list[str]:
    try:
        return shlex.split(line)
    except ValueError as e:
        raise CommandError(f"Cannot parse command: {e}") from None


class CommandProcessor:
    """Parses and executes shell commands.

    Args:
        config_store: Store every mutation is saved through.
        presenter: Dashboard presenter toggled by ``ui`` commands.
        stop_event: Set by ``quit`` to shut the application down.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        presenter: Presenter | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._config_store = config_store
        self._presenter = presenter
        self._stop_event = stop_event or asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    def execute(self, line: str) -> str:
        """Run one command line and return the text to show the user.

        Errors are returned as text; nothing raised here stops the loop.
        """
        try:
            args = split_args(line)
            if not args:
                return ""
            return self._dispatch(args[0].lower(), args[1:])
        except WatcherError as e:
            logger.info("command_rejected", line=line, error=str(e))
            return f"Error: {e}"

    def _dispatch(self, cmd: str, args: list[str]) -> str:
        if cmd in ("help", "h"):
            return HELP_TEXT
        if cmd in ("quit", "exit", "q"):
            self._request_stop()
            return "Bye."
        if cmd == "config":
            return self._config(args)
        if cmd == "filter":
            return self._filter(args)
        if cmd == "ui":
            return self._ui(args)
        return "Unknown command. Type 'help' for options."

    def _request_stop(self) -> None:
        # execute() runs on a worker thread when driven by run()
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._stop_event.set)
        else:
            self._stop_event.set()

    def _config(self, args: list[str]) -> str:
        sub = args[0].lower() if args else "show"

        if sub == "show":
            return json.dumps(self._config_store.current.model_dump(mode="json"), indent=2)

        if sub == "set":
            if len(args) < 3:
                return "Usage: config set <key> <value>"
            apply_setting(self._config_store, args[1], " ".join(args[2:]))
            return "Saved. Change will apply immediately."

        if sub == "include":
            pairs = [p.upper() for p in args[1:]]
            self._config_store.save(lambda c: setattr(c.filters, "include_symbols", pairs))
            return "Include list updated & saved."

        if sub == "exclude":
            pairs = [p.upper() for p in args[1:]]
            self._config_store.save(lambda c: setattr(c.filters, "exclude_symbols", pairs))
            return "Exclude list updated & saved."

        return "config show | config set <key> <value> | config include <pairs...> | config exclude <pairs...>"

    def _filter(self, args: list[str]) -> str:
        usage = (
            "Usage: filter quotes <QUOTE...> | filter minqv <num> | "
            "filter minbv <num> | filter new <true|false> [days]"
        )
        if not args:
            return usage

        sub = args[0].lower()
        if sub == "quotes":
            quotes = [q.upper() for q in args[1:]]
            self._config_store.save(lambda c: setattr(c.filters, "allowed_quote_currencies", quotes))
            return "Quote currencies updated & saved."

        if sub in ("minqv", "minbv"):
            if len(args) < 2:
                return f"Usage: filter {sub} <number>"
            floor = _parse_float(args[1])
            if floor < 0:
                raise CommandError("Value must be >= 0")
            field = "min_quote_volume_24h" if sub == "minqv" else "min_base_volume_24h"
            self._config_store.save(lambda c: setattr(c.filters, field, floor))
            return f"{field} updated & saved."

        if sub == "new":
            if len(args) < 2:
                return "Usage: filter new <true|false> [days]"
            new_only = parse_bool(args[1])
            days = DEFAULT_NEW_SINCE_DAYS
            if len(args) >= 3:
                try:
                    days = max(1, int(args[2]))
                except ValueError:
                    days = DEFAULT_NEW_SINCE_DAYS

            def _set_new(c) -> None:
                c.filters.new_only = new_only
                c.filters.new_since_days = days

            self._config_store.save(_set_new)
            return f"New-only filter {'on' if new_only else 'off'} ({days} days) & saved."

        return usage

    def _ui(self, args: list[str]) -> str:
        usage = "ui open | ui close | ui toggle"
        if not args:
            return usage
        if self._presenter is None:
            return "Dashboard is disabled."

        sub = args[0].lower()
        if sub == "open":
            self._presenter.open()
            return "Dashboard updates on."
        if sub == "close":
            self._presenter.close()
            return "Dashboard updates off."
        if sub == "toggle":
            visible = self._presenter.toggle()
            return f"Dashboard updates {'on' if visible else 'off'}."
        return usage

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Read commands from stdin until EOF or the stop event is set."""
        stop = stop_event or self._stop_event
        loop = asyncio.get_running_loop()
        self._loop = loop
        reader = asyncio.StreamReader()
        transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
        )
        print(HELP_TEXT, flush=True)
        stop_wait = asyncio.ensure_future(stop.wait())
        try:
            while not stop.is_set():
                print("> ", end="", flush=True)
                read = asyncio.ensure_future(reader.readline())
                done, _ = await asyncio.wait({read, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
                if read not in done:
                    read.cancel()
                    break
                raw = read.result()
                if not raw:
                    logger.info("command_input_closed")
                    break
                # saves fsync the document; keep that off the event loop
                output = await asyncio.to_thread(self.execute, raw.decode(errors="replace"))
                if output:
                    print(output, flush=True)
        finally:
            stop_wait.cancel()
            transport.close()
            self._loop = None
