"""Market data layer -- pair cache, filters, sliding windows, thresholds and ranking."""

from gatewatch.market_data.filters import FilterPipeline
from gatewatch.market_data.pair_cache import PairMetadataCache
from gatewatch.market_data.ranker import RankingAggregator
from gatewatch.market_data.threshold import ThresholdEngine, lookback_steps, required_window
from gatewatch.market_data.window import SlidingWindowTracker

__all__ = [
    "FilterPipeline",
    "PairMetadataCache",
    "RankingAggregator",
    "SlidingWindowTracker",
    "ThresholdEngine",
    "lookback_steps",
    "required_window",
]
