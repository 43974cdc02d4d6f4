"""Exchange client layer -- market data source interface and Gate.io implementation."""

from gatewatch.exchange.gateio_client import GateIoSource
from gatewatch.exchange.source import MarketDataSource

__all__ = ["GateIoSource", "MarketDataSource"]
