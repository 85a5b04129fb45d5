"""OHLC candle vendors and the fallback service over them."""

from __future__ import annotations

import math
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx

from marketiq_core.http import HttpPermanentError, parse_json, parse_json_object, send
from marketiq_core.providers.chain import (
    ChainFailure,
    ChainSuccess,
    ProviderCandidate,
    ProviderChain,
)
from marketiq_core.settings import CoreSettings

VENDOR_TIMEOUT_SECONDS = 8.0
MIN_CANDLES = 20
SNAPSHOT_LOOKBACK = 80

_BINANCE_INTERVALS = {"M15": "15m", "M30": "30m", "H1": "1h", "H4": "4h", "D1": "1d"}
_YAHOO_RANGES = {
    "D1": ("6mo", "1d"),
    "H4": ("1mo", "1h"),
    "M15": ("5d", "15m"),
    "M30": ("10d", "30m"),
}
_SIX_LETTERS = re.compile(r"^[A-Z]{6}$")


@dataclass(frozen=True)
class Candle:
    """One OHLC bar; ``t`` is the open time in epoch milliseconds."""

    t: int
    o: float
    h: float
    l: float  # noqa: E741
    c: float


@dataclass(frozen=True)
class MarketSnapshot:
    last_close: float
    change_pct: float
    range_high: float
    range_low: float


def _finite(*values: object) -> tuple[float, ...] | None:
    out: list[float] = []
    for value in values:
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number):
            return None
        out.append(number)
    return tuple(out)


def _candle(t: object, o: object, h: object, low: object, c: object) -> Candle | None:
    values = _finite(t, o, h, low, c)
    if values is None:
        return None
    return Candle(int(values[0]), values[1], values[2], values[3], values[4])


def _require_non_empty(candles: list[Candle], label: str) -> list[Candle]:
    if not candles:
        raise HttpPermanentError(f"{label}_empty")
    return candles


def _parse_iso_ms(value: object) -> int | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def normalize_timeframe(timeframe: str | None) -> str:
    value = (timeframe or "H1").strip().upper()
    return value if value in _BINANCE_INTERVALS else "H1"


def yahoo_symbol(market: str, symbol: str) -> str:
    """Map a user-facing symbol to Yahoo's ticker convention."""
    m = market.strip().upper()
    s = symbol.strip().upper()
    if s == "WTI":
        return "CL=F"
    if s == "BRENT":
        return "BZ=F"
    if m == "FOREX" and _SIX_LETTERS.match(s):
        return f"{s}=X"
    if m == "METALS" and s in {"XAUUSD", "XAGUSD"}:
        return f"{s}=X"
    return s


async def _get(client: httpx.AsyncClient, url: str, params: Mapping[str, str], label: str) -> httpx.Response:
    request = client.build_request("GET", url, params=dict(params), timeout=VENDOR_TIMEOUT_SECONDS)
    return await send(client, request, label=label)


async def fetch_candles_binance(
    client: httpx.AsyncClient, symbol: str, interval: str, limit: int
) -> list[Candle]:
    response = await _get(
        client,
        "https://api.binance.com/api/v3/klines",
        {"symbol": symbol.upper(), "interval": interval, "limit": str(limit)},
        "binance",
    )
    rows = parse_json(response, label="binance")
    if not isinstance(rows, list):
        raise HttpPermanentError("binance_parse")
    candles = [
        candle
        for row in rows
        if isinstance(row, list) and len(row) >= 5
        and (candle := _candle(row[0], row[1], row[2], row[3], row[4])) is not None
    ]
    return candles


async def fetch_candles_yahoo(
    client: httpx.AsyncClient, symbol: str, range_: str, interval: str
) -> list[Candle]:
    response = await _get(
        client,
        f"https://query1.finance.yahoo.com/v8/finance/chart/{symbol}",
        {"range": range_, "interval": interval},
        "yahoo",
    )
    payload = parse_json_object(response, label="yahoo")
    chart = payload.get("chart")
    results = chart.get("result") if isinstance(chart, dict) else None
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        raise HttpPermanentError("yahoo_parse")
    result = results[0]
    timestamps = result.get("timestamp") or []
    indicators = result.get("indicators")
    quotes = indicators.get("quote") if isinstance(indicators, dict) else None
    quote = quotes[0] if isinstance(quotes, list) and quotes and isinstance(quotes[0], dict) else {}

    def _series(field: str) -> list[object]:
        values = quote.get(field)
        return values if isinstance(values, list) else []

    opens, highs, lows, closes = (_series(f) for f in ("open", "high", "low", "close"))
    candles: list[Candle] = []
    for index, ts in enumerate(timestamps if isinstance(timestamps, list) else []):
        if index >= min(len(opens), len(highs), len(lows), len(closes)):
            break
        seconds = _finite(ts)
        if seconds is None:
            continue
        candle = _candle(
            seconds[0] * 1000, opens[index], highs[index], lows[index], closes[index]
        )
        if candle is not None:
            candles.append(candle)
    return _require_non_empty(candles, "yahoo")


async def fetch_candles_twelvedata(
    client: httpx.AsyncClient, api_key: str, symbol: str, interval: str, outputsize: int
) -> list[Candle]:
    response = await _get(
        client,
        "https://api.twelvedata.com/time_series",
        {
            "symbol": symbol,
            "interval": interval,
            "outputsize": str(outputsize),
            "apikey": api_key,
        },
        "twelvedata",
    )
    payload = parse_json_object(response, label="twelvedata")
    values = payload.get("values")
    if not isinstance(values, list):
        raise HttpPermanentError("twelvedata_parse")
    candles: list[Candle] = []
    for value in values:
        if not isinstance(value, dict):
            continue
        ts = _parse_iso_ms(value.get("datetime") or value.get("datetime_utc"))
        if ts is None:
            continue
        candle = _candle(ts, value.get("open"), value.get("high"), value.get("low"), value.get("close"))
        if candle is not None:
            candles.append(candle)
    candles.reverse()
    return _require_non_empty(candles, "twelvedata")


async def fetch_candles_finnhub(
    client: httpx.AsyncClient,
    api_key: str,
    symbol: str,
    resolution: str,
    from_sec: int,
    to_sec: int,
) -> list[Candle]:
    response = await _get(
        client,
        "https://finnhub.io/api/v1/stock/candle",
        {
            "symbol": symbol,
            "resolution": resolution,
            "from": str(from_sec),
            "to": str(to_sec),
            "token": api_key,
        },
        "finnhub",
    )
    payload = parse_json_object(response, label="finnhub")
    if payload.get("s") != "ok":
        raise HttpPermanentError("finnhub_notok")
    columns = [payload.get(field) for field in ("t", "o", "h", "l", "c")]
    if not all(isinstance(column, list) for column in columns):
        raise HttpPermanentError("finnhub_parse")
    ts, opens, highs, lows, closes = (list(column) for column in columns)  # type: ignore[arg-type]
    candles: list[Candle] = []
    for index in range(min(len(ts), len(opens), len(highs), len(lows), len(closes))):
        seconds = _finite(ts[index])
        if seconds is None:
            continue
        candle = _candle(seconds[0] * 1000, opens[index], highs[index], lows[index], closes[index])
        if candle is not None:
            candles.append(candle)
    return _require_non_empty(candles, "finnhub")


async def fetch_candles_alphavantage(
    client: httpx.AsyncClient, api_key: str, symbol: str, interval: str
) -> list[Candle]:
    response = await _get(
        client,
        "https://www.alphavantage.co/query",
        {
            "function": "TIME_SERIES_INTRADAY",
            "symbol": symbol,
            "interval": interval,
            "apikey": api_key,
            "outputsize": "compact",
        },
        "alphavantage",
    )
    payload = parse_json_object(response, label="alphavantage")
    series_key = next((key for key in payload if "time series" in key.lower()), None)
    series = payload.get(series_key) if series_key else None
    if not isinstance(series, dict):
        raise HttpPermanentError("alphavantage_parse")
    candles: list[Candle] = []
    for stamp, bar in series.items():
        if not isinstance(bar, dict):
            continue
        ts = _parse_iso_ms(str(stamp).replace(" ", "T"))
        if ts is None:
            continue
        candle = _candle(ts, bar.get("1. open"), bar.get("2. high"), bar.get("3. low"), bar.get("4. close"))
        if candle is not None:
            candles.append(candle)
    candles.sort(key=lambda candle: candle.t)
    return _require_non_empty(candles, "alphavantage")


async def fetch_candles_polygon(
    client: httpx.AsyncClient, api_key: str, symbol: str, from_date: str, to_date: str
) -> list[Candle]:
    response = await _get(
        client,
        f"https://api.polygon.io/v2/aggs/ticker/{symbol}/range/1/hour/{from_date}/{to_date}",
        {"adjusted": "true", "sort": "asc", "limit": "50000", "apiKey": api_key},
        "polygon",
    )
    payload = parse_json_object(response, label="polygon")
    results = payload.get("results") or []
    if not isinstance(results, list):
        raise HttpPermanentError("polygon_parse")
    candles = [
        candle
        for row in results
        if isinstance(row, dict)
        and (candle := _candle(row.get("t"), row.get("o"), row.get("h"), row.get("l"), row.get("c")))
        is not None
    ]
    return _require_non_empty(candles, "polygon")


def snapshot_from_candles(candles: list[Candle]) -> MarketSnapshot:
    """Summarize the latest bar against the previous close and recent range."""
    if not candles:
        raise ValueError("candles must not be empty")
    last = candles[-1]
    prev = candles[-2] if len(candles) > 1 else last
    change = ((last.c - prev.c) / prev.c) * 100 if prev.c else 0.0
    window = candles[-SNAPSHOT_LOOKBACK:]
    return MarketSnapshot(
        last_close=last.c,
        change_pct=change,
        range_high=max(candle.h for candle in window),
        range_low=min(candle.l for candle in window),
    )


def has_enough_candles(candles: list[Candle]) -> bool:
    return len(candles) >= MIN_CANDLES


class MarketDataService:
    """Candles with vendor fallback.

    Binance leads for crypto; the keyless Yahoo feed follows; keyed vendors
    are only tried when their API key is configured.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        chain: ProviderChain,
        settings: CoreSettings,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._chain = chain
        self._settings = settings
        self._now_fn = now_fn

    def build_candidates(
        self, market: str, symbol: str, timeframe: str
    ) -> list[ProviderCandidate[list[Candle]]]:
        market_u = market.strip().upper()
        tf = normalize_timeframe(timeframe)
        limit = 180 if tf == "D1" else 260
        client = self._client
        settings = self._settings
        vendors: list[tuple[str, Callable[[], Awaitable[list[Candle]]]]] = []

        if market_u == "CRYPTO":
            interval = _BINANCE_INTERVALS[tf]
            vendors.append(
                ("binance", lambda: fetch_candles_binance(client, symbol, interval, limit))
            )

        yahoo_range, yahoo_interval = _YAHOO_RANGES.get(tf, ("10d", "1h"))
        ys = yahoo_symbol(market_u, symbol)
        vendors.append(
            ("yahoo", lambda: fetch_candles_yahoo(client, ys, yahoo_range, yahoo_interval))
        )

        if settings.twelvedata_api_key:
            td_interval = {"D1": "1day", "M15": "15min", "M30": "30min"}.get(tf, "1h")
            vendors.append(
                (
                    "twelvedata",
                    lambda: fetch_candles_twelvedata(
                        client, settings.twelvedata_api_key, symbol, td_interval, limit
                    ),
                )
            )

        if settings.finnhub_api_key:
            resolution = "D" if tf == "D1" else "60"
            to_sec = int(self._now_fn())
            from_sec = to_sec - 30 * 24 * 3600
            vendors.append(
                (
                    "finnhub",
                    lambda: fetch_candles_finnhub(
                        client, settings.finnhub_api_key, symbol, resolution, from_sec, to_sec
                    ),
                )
            )

        if settings.alphavantage_api_key:
            av_interval = {"M15": "15min", "M30": "30min"}.get(tf, "60min")
            vendors.append(
                (
                    "alphavantage",
                    lambda: fetch_candles_alphavantage(
                        client, settings.alphavantage_api_key, symbol, av_interval
                    ),
                )
            )

        if settings.polygon_api_key:
            today = datetime.fromtimestamp(self._now_fn(), tz=UTC)
            to_date = today.strftime("%Y-%m-%d")
            from_date = (today - timedelta(days=20)).strftime("%Y-%m-%d")
            vendors.append(
                (
                    "polygon",
                    lambda: fetch_candles_polygon(
                        client, settings.polygon_api_key, symbol, from_date, to_date
                    ),
                )
            )

        return [
            ProviderCandidate(name=name, invoke=invoke, breaker_name=f"data:{name}:{market_u}")
            for name, invoke in vendors
        ]

    async def get_candles(
        self, market: str, symbol: str, timeframe: str = "H1"
    ) -> ChainSuccess[list[Candle]] | ChainFailure:
        """Return candles from the first vendor yielding at least 20 bars."""
        candidates = self.build_candidates(market, symbol, timeframe)
        return await self._chain.fetch_first_success(
            f"candles:{market.strip().upper()}:{symbol.strip().upper()}",
            candidates,
            is_acceptable=has_enough_candles,
            timeout=VENDOR_TIMEOUT_SECONDS,
        )
