"""Financial quote source backed by Alpha Vantage GLOBAL_QUOTE.

The free tier is tight (25 requests/day), so the default cadence is slow
and rate-limit answers are treated as transient: Alpha Vantage reports
them with HTTP 200 and a "Note" or "Information" field instead of data.

Config example (in dashboard.yaml):
    sources:
      - id: "market.spy"
        type: "quote"
        symbol: "SPY"
        api_key: "..."            # or set ALPHAVANTAGE_API_KEY
"""

import logging
import os
import random
from typing import Any, Dict, Optional, Tuple

from lifestream.data_source import DataSource, FatalError, FetchContext, NewData, UnchangedData
from lifestream.errors import FatalSourceError, TransientFetchError
from lifestream.registry import register_source
from sources.httpclient import http_get, make_session

logger = logging.getLogger(__name__)

API_URL = "https://www.alphavantage.co/query"


def _number(value: Any) -> Optional[float]:
    try:
        return float(str(value).rstrip("%"))
    except (TypeError, ValueError):
        return None


def parse_global_quote(body: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten Alpha Vantage's numbered keys ("05. price") into plain ones."""
    raw = body.get("Global Quote") or {}
    if not raw:
        raise TransientFetchError("empty Global Quote")
    fields = {key.split(". ", 1)[-1]: value for key, value in raw.items()}
    price = _number(fields.get("price"))
    if price is None:
        raise TransientFetchError("quote without a price")
    return {
        "symbol": fields.get("symbol", ""),
        "price": price,
        "open": _number(fields.get("open")),
        "high": _number(fields.get("high")),
        "low": _number(fields.get("low")),
        "previous_close": _number(fields.get("previous close")),
        "change": _number(fields.get("change")),
        "change_percent": _number(fields.get("change percent")),
        "volume": _number(fields.get("volume")),
        "trading_day": fields.get("latest trading day", ""),
    }


@register_source("quote")
class QuoteSource(DataSource):
    """Polls one ticker symbol; an unchanged price is not new data."""

    default_options = {
        "base_interval": 3600,
        "initial_slack": 60,
        "minimum_interval": 900,
        "maximum_interval": 4 * 3600,
        "retry_interval": 600,
        "max_retries": 2,
    }

    def __init__(self, source_id: str, config: Dict):
        super().__init__(source_id, config)
        self.symbol = self.config.get("symbol", "SPY")
        self.api_key = self.config.get("api_key") or os.environ.get("ALPHAVANTAGE_API_KEY", "")
        self.demo = bool(self.config.get("demo", False))
        self._timeout = self.config.get("timeout", 15)
        self._session = make_session()
        self._last_key: Optional[Tuple[float, str]] = None
        self._demo_price = float(self.config.get("demo_price", 450.0))

    def _quote(self) -> Dict[str, Any]:
        params = {"function": "GLOBAL_QUOTE", "symbol": self.symbol, "apikey": self.api_key}
        resp = http_get(self._session, API_URL, params=params, timeout=self._timeout)
        if resp is None:
            raise TransientFetchError("quote endpoint returned 404")
        try:
            body = resp.json()
        except ValueError as exc:
            raise TransientFetchError(f"invalid quote JSON: {exc}") from exc

        if "Error Message" in body:
            raise FatalSourceError(f"Alpha Vantage rejected {self.symbol}: {body['Error Message']}")
        for key in ("Note", "Information"):
            if key in body:
                logger.warning("Alpha Vantage rate limit message: %s", body[key])
                raise TransientFetchError("Alpha Vantage rate limit reached")
        return parse_global_quote(body)

    def _demo_quote(self) -> Dict[str, Any]:
        previous = self._demo_price
        self._demo_price = round(max(1.0, previous * (1 + random.gauss(0, 0.004))), 2)
        change = round(self._demo_price - previous, 2)
        return {
            "symbol": self.symbol,
            "price": self._demo_price,
            "previous_close": previous,
            "change": change,
            "change_percent": round(change / previous * 100, 3),
            "trading_day": "demo",
        }

    def fetch(self, context: FetchContext):
        if self.demo:
            quote = self._demo_quote()
        elif not self.api_key:
            return FatalError("no Alpha Vantage API key configured")
        else:
            quote = self._quote()

        key = (quote["price"], quote["trading_day"])
        last = context.last_data_timestamp
        if key == self._last_key and last is not None:
            return UnchangedData(last)
        self._last_key = key
        logger.info("%s %.2f (%s)", quote["symbol"], quote["price"], quote.get("change_percent"))
        return NewData(quote, context.now)

    def close(self):
        self._session.close()
