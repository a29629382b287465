"""Exchange market data for the paper trading bot."""
from exchange.market_data import (
    BinanceMarketDataClient,
    CoinDetails,
    InvalidSymbolError,
    MarketDataError,
    PriceQuote,
    TrendingCoin,
    create_binance_client,
    normalize_symbol,
)

__all__ = [
    "BinanceMarketDataClient",
    "CoinDetails",
    "InvalidSymbolError",
    "MarketDataError",
    "PriceQuote",
    "TrendingCoin",
    "create_binance_client",
    "normalize_symbol",
]
