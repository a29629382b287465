"""
Market data client for Binance USDⓈ-M futures public endpoints.

Wraps python-binance's Client to provide the price lookups the paper
trading bot needs: last price, 24h details and the most traded symbols.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException
from requests.exceptions import RequestException

from config.settings import QUOTE_ASSET, TRENDING_LIMIT


_LOOKUP_ERRORS = (
    BinanceAPIException,
    BinanceRequestException,
    RequestException,
    KeyError,
    TypeError,
    ValueError,
)


class MarketDataError(Exception):
    """Price source unavailable or returned unusable data."""


class InvalidSymbolError(MarketDataError):
    def __init__(self, symbol: str) -> None:
        super().__init__(f"Invalid symbol: {symbol}")
        self.symbol = symbol


@dataclass(slots=True)
class PriceQuote:
    symbol: str
    price: float


@dataclass(slots=True)
class CoinDetails:
    symbol: str
    price: float
    price_change: float
    price_change_percent: float
    high_price: float
    low_price: float
    volume: float
    quote_volume: float


@dataclass(slots=True)
class TrendingCoin:
    symbol: str
    price_change_percent: float
    volume: float


def normalize_symbol(symbol: str) -> str:
    """Upper-case and append the quote asset when missing ("btc" -> "BTCUSDT")."""
    raw = (symbol or "").strip().upper()
    if raw and not raw.endswith(QUOTE_ASSET):
        raw += QUOTE_ASSET
    return raw


class BinanceMarketDataClient:
    def __init__(self, binance_client: Client) -> None:
        self._client = binance_client

    def get_price(self, symbol: str) -> PriceQuote:
        normalized = normalize_symbol(symbol)
        if not normalized:
            raise InvalidSymbolError(symbol)
        try:
            data = self._client.futures_symbol_ticker(symbol=normalized)
            return PriceQuote(symbol=data["symbol"], price=float(data["price"]))
        except _LOOKUP_ERRORS as exc:
            logging.debug("Price lookup failed for %s: %s", normalized, exc)
            raise InvalidSymbolError(normalized) from exc

    def get_details(self, symbol: str) -> CoinDetails:
        normalized = normalize_symbol(symbol)
        if not normalized:
            raise InvalidSymbolError(symbol)
        try:
            price = self._client.futures_symbol_ticker(symbol=normalized)
            stats = self._client.futures_ticker(symbol=normalized)
            return CoinDetails(
                symbol=price["symbol"],
                price=float(price["price"]),
                price_change=float(stats["priceChange"]),
                price_change_percent=float(stats["priceChangePercent"]),
                high_price=float(stats["highPrice"]),
                low_price=float(stats["lowPrice"]),
                volume=float(stats["volume"]),
                quote_volume=float(stats["quoteVolume"]),
            )
        except _LOOKUP_ERRORS as exc:
            logging.debug("24h details lookup failed for %s: %s", normalized, exc)
            raise InvalidSymbolError(normalized) from exc

    def get_trending(self, limit: int = TRENDING_LIMIT) -> List[TrendingCoin]:
        """Return quote-asset symbols ordered by 24h quote volume, highest first."""
        try:
            tickers = self._client.futures_ticker()
        except _LOOKUP_ERRORS as exc:
            logging.warning("Trending coins lookup failed: %s", exc)
            raise MarketDataError("Failed to fetch trending coins") from exc

        coins: List[TrendingCoin] = []
        for entry in tickers or []:
            if not isinstance(entry, dict):
                continue
            symbol = str(entry.get("symbol", ""))
            if not symbol.endswith(QUOTE_ASSET):
                continue
            try:
                coins.append(
                    TrendingCoin(
                        symbol=symbol,
                        price_change_percent=float(entry.get("priceChangePercent")),
                        volume=float(entry.get("quoteVolume")),
                    )
                )
            except (TypeError, ValueError):
                continue
        coins.sort(key=lambda coin: coin.volume, reverse=True)
        return coins[:limit]

    def get_prices(self, symbols: List[str]) -> Dict[str, float]:
        """Best-effort price map; symbols that fail are omitted."""
        prices: Dict[str, float] = {}
        for symbol in symbols:
            if symbol in prices:
                continue
            try:
                prices[symbol] = self.get_price(symbol).price
            except MarketDataError as exc:
                logging.warning("Skipping price for %s: %s", symbol, exc)
        return prices


def create_binance_client(api_key: str = "", api_secret: str = "") -> Optional[Client]:
    """Return a Binance client for public futures data, or None on failure."""
    try:
        logging.info("Attempting to initialize Binance client...")
        client = Client(api_key or None, api_secret or None)
        logging.info("Binance client initialized successfully.")
        return client
    except RequestException as exc:
        logging.error("Network error while connecting to Binance API: %s", exc)
    except (BinanceAPIException, BinanceRequestException) as exc:
        logging.error("Binance API rejected client initialization: %s", exc)
    return None
