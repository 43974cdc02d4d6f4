"""Shared test fixtures for the market mover watcher."""

from pathlib import Path

import pytest

from gatewatch.config import WatcherConfig
from gatewatch.config_store import ConfigStore
from gatewatch.models import PairMetadata, TickerSample


def make_sample(
    symbol: str = "BTC_USDT",
    change: float = 0.0,
    last: float = 100.0,
    base_volume: float = 1_000.0,
    quote_volume: float = 100_000.0,
) -> TickerSample:
    """Build a TickerSample with liquid defaults that pass the default filters."""
    return TickerSample(
        symbol=symbol,
        last_price=last,
        change_percent=change,
        base_volume_24h=base_volume,
        quote_volume_24h=quote_volume,
    )


def make_meta(
    symbol: str = "BTC_USDT",
    quote: str = "USDT",
    trade_status: str = "tradable",
    buy_start: int = 0,
) -> PairMetadata:
    base = symbol.split("_")[0]
    return PairMetadata(
        symbol=symbol,
        base=base,
        quote=quote,
        trade_status=trade_status,
        buy_start=buy_start,
    )


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "appsettings.json"


@pytest.fixture
def store(config_path: Path) -> ConfigStore:
    """Loaded ConfigStore with short timings so reload tests stay fast."""
    config_store = ConfigStore(
        config_path,
        debounce_seconds=0.05,
        self_write_window=1.0,
        watch_interval=0.02,
        read_attempts=3,
        read_initial_delay=0.01,
        read_delay_step=0.01,
        read_max_delay=0.02,
    )
    config_store.load()
    return config_store


@pytest.fixture
def default_config() -> WatcherConfig:
    return WatcherConfig()
