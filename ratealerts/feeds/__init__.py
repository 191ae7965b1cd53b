"""Rate fetch and streaming collaborators."""

from ratealerts.feeds.base import (
    BaseQuoteConnection,
    BaseQuoteStream,
    BaseRateFetcher,
    Quote,
)
from ratealerts.feeds.binance_stream import BinanceQuoteStream
from ratealerts.feeds.live import FeedState, LiveFeedSubscriptionManager
from ratealerts.feeds.rest import BinanceRestFetcher, CompositeFetcher, HexarateFetcher

__all__ = [
    "BaseQuoteConnection",
    "BaseQuoteStream",
    "BaseRateFetcher",
    "BinanceQuoteStream",
    "BinanceRestFetcher",
    "CompositeFetcher",
    "FeedState",
    "HexarateFetcher",
    "LiveFeedSubscriptionManager",
    "Quote",
]
