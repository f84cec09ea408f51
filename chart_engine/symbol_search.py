import re
from typing import Optional, Tuple

import httpx
from loguru import logger

from config import SYMBOL_SEARCH_URL, SYMBOL_SEARCH_TIMEOUT
from schemas import SymbolResult, SymbolSearchResponse
from .errors import SymbolSearchError

_HTML_TAG = re.compile(r"</?[^>]+(>|$)")

SEARCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Accept": "application/json",
    "Origin": "https://www.tradingview.com",
    "Referer": "https://www.tradingview.com/",
}


def strip_html_tags(value: Optional[str]) -> str:
    return _HTML_TAG.sub("", value or "")


def parse_search_text(text: str) -> Tuple[Optional[str], str]:
    """'nasdaq:aapl' -> ('NASDAQ', 'AAPL') ; 'aapl' -> (None, 'AAPL')."""
    parts = text.upper().replace(" ", "+").split(":")
    exchange = parts[0] if len(parts) == 2 else None
    return exchange, parts[-1]


def reshape_symbol(raw: dict) -> SymbolResult:
    symbol = strip_html_tags(raw.get("symbol"))
    full_exchange = strip_html_tags(raw.get("exchange"))
    exchange = full_exchange.split(" ")[0]

    if raw.get("prefix"):
        symbol_id = f"{strip_html_tags(raw['prefix'])}:{symbol}"
    else:
        symbol_id = f"{exchange.upper()}:{symbol}"

    return SymbolResult(
        id=symbol_id,
        symbol=symbol,
        exchange=exchange,
        full_exchange=full_exchange,
        description=raw.get("description"),  # garde les <em> pour le surlignage
        type=raw.get("type"),
        currency_code=raw.get("currency_code"),
        country=raw.get("country"),
        pro=raw.get("pro"),
        typespecs=raw.get("typespecs"),
    )


class SymbolSearchClient:
    def __init__(self, url: str = SYMBOL_SEARCH_URL, timeout: float = SYMBOL_SEARCH_TIMEOUT, transport=None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def search(self, text: str, search_type: str = None) -> SymbolSearchResponse:
        exchange, search_text = parse_search_text(text)
        params = {
            "text": search_text,
            "hl": 1,
            "lang": "en",
            "domain": "production",
            "sort_by_country": "US",
        }
        if exchange:
            params["exchange"] = exchange
        if search_type:
            params["search_type"] = search_type

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.url, params=params, headers=SEARCH_HEADERS)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Recherche de symboles échouée pour '{text}' : {e}")
            raise SymbolSearchError(str(e)) from e

        symbols = [reshape_symbol(raw) for raw in data.get("symbols") or []]
        return SymbolSearchResponse(symbols=symbols, symbols_remaining=data.get("symbols_remaining") or 0)
