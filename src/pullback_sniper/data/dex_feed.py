from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set
from logging import Logger
import asyncio
import os
import aiohttp
import base58
from dotenv import load_dotenv
from pullback_sniper.core.types import PricePoint, Token
from .price_source import PriceSource, PriceSourceError

# Load environment variables
load_dotenv()

DEFAULT_API_URL = "https://api.dexscreener.com"
CHAIN_ID = "solana"
QUOTE_SYMBOLS = {"SOL", "WSOL", "USDC", "USDT"}


def is_valid_solana_address(address: str) -> bool:
    """A Solana account address is 32 bytes, base58 encoded"""
    if not address or address.startswith("0x") or not (32 <= len(address) <= 44):
        return False
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False


def parse_pair_point(pair: Dict[str, Any], observed_at: datetime) -> Optional[PricePoint]:
    """Snapshot of one DexScreener pair. Volume is the rolling 5 minute volume."""
    try:
        price = float(pair.get("priceUsd") or 0)
        market_cap = float(pair.get("marketCap") or pair.get("fdv") or 0)
        volume = float((pair.get("volume") or {}).get("m5") or 0)
    except (TypeError, ValueError):
        return None
    if price <= 0:
        return None
    return PricePoint(timestamp=observed_at, price=price, market_cap=market_cap, volume=volume)


def parse_pair_token(pair: Dict[str, Any], address: Optional[str] = None) -> Optional[Token]:
    """The non-quote side of a pair as a Token candidate"""
    base, quote = pair.get("baseToken") or {}, pair.get("quoteToken") or {}
    if address:
        info = base if base.get("address") == address else quote
    else:
        info = base if base.get("symbol") not in QUOTE_SYMBOLS else quote
    token_address = info.get("address")
    if not token_address or info.get("symbol") in QUOTE_SYMBOLS:
        return None

    created_at = None
    if pair.get("pairCreatedAt"):
        created_at = datetime.fromtimestamp(pair["pairCreatedAt"] / 1000, tz=timezone.utc)

    return Token(
        address=token_address,
        name=info.get("name") or "Unknown",
        symbol=info.get("symbol") or "???",
        created_at=created_at,
    )


class DexScreenerPriceSource(PriceSource):
    """Live polling client for DexScreener's public API"""

    def __init__(self,
                 logger: Logger,
                 api_url: Optional[str] = None,
                 request_timeout: float = 5.0,
                 discovery_limit: int = 50,
                 max_age_minutes: Optional[float] = None,
                 clock: Callable[[], datetime] = None):
        self.api_url = (api_url or os.getenv('DEX_API_URL') or DEFAULT_API_URL).rstrip("/")
        self.request_timeout = request_timeout
        self.discovery_limit = discovery_limit
        self.max_age_minutes = max_age_minutes
        self.logger = logger
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.session: Optional[aiohttp.ClientSession] = None
        self.seen: Set[str] = set()

    async def init_session(self):
        if not self.session or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            headers = {"User-Agent": "pullback-sniper/1.0"}
            self.session = aiohttp.ClientSession(timeout=timeout, headers=headers)

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()

    async def _get_json(self, path: str) -> Any:
        await self.init_session()
        url = f"{self.api_url}{path}"
        try:
            async with self.session.get(url) as response:
                if response.status == 429:
                    raise PriceSourceError(f"Rate limited by {url}")
                if response.status != 200:
                    raise PriceSourceError(f"{url} returned HTTP {response.status}")
                return await response.json()
        except aiohttp.ClientError as e:
            raise PriceSourceError(f"Request to {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise PriceSourceError(f"Request to {url} timed out after {self.request_timeout}s") from e

    async def fetch_latest(self, address: str) -> Optional[PricePoint]:
        pairs = await self._get_json(f"/token-pairs/v1/{CHAIN_ID}/{address}")
        if not isinstance(pairs, list) or not pairs:
            return None
        # The first pair is the main pool
        return parse_pair_point(pairs[0], self.clock())

    async def discover(self) -> List[Token]:
        """
        Boosted tokens plus a SOL pair search. The two listings and every
        per-boost pair lookup run concurrently and fail independently; only
        losing both listings fails the discovery step.
        """
        boosts, search = await asyncio.gather(
            self._get_json("/token-boosts/latest/v1"),
            self._get_json("/latest/dex/search?q=SOL"),
            return_exceptions=True,
        )
        if isinstance(boosts, Exception) and isinstance(search, Exception):
            raise boosts
        candidates: Dict[str, Token] = {}

        if isinstance(boosts, Exception):
            self.logger.warning(f"Boosted token listing failed: {boosts}")
        else:
            for token in await self._resolve_boosts(boosts):
                candidates.setdefault(token.address, token)

        if isinstance(search, Exception):
            self.logger.warning(f"Pair search failed: {search}")
        else:
            pairs = search.get("pairs") if isinstance(search, dict) else None
            for pair in (pairs or [])[:self.discovery_limit]:
                if pair.get("chainId") != CHAIN_ID:
                    continue
                token = parse_pair_token(pair)
                if token:
                    candidates.setdefault(token.address, token)

        return self._filter_new(candidates.values())

    async def _resolve_boosts(self, boosts: Any) -> List[Token]:
        addresses: List[str] = []
        for boost in (boosts if isinstance(boosts, list) else [])[:20]:
            address = boost.get("tokenAddress")
            if boost.get("chainId") == CHAIN_ID and address and address not in addresses:
                addresses.append(address)

        results = await asyncio.gather(
            *(self._get_json(f"/token-pairs/v1/{CHAIN_ID}/{address}") for address in addresses),
            return_exceptions=True,
        )
        tokens = []
        for address, pairs in zip(addresses, results):
            if isinstance(pairs, Exception):
                self.logger.warning(f"Pair lookup for boosted token {address} failed: {pairs}")
                continue
            if isinstance(pairs, list) and pairs:
                token = parse_pair_token(pairs[0], address)
                if token:
                    tokens.append(token)
        return tokens

    def _filter_new(self, tokens) -> List[Token]:
        now = self.clock()
        fresh = []
        for token in tokens:
            if token.address in self.seen:
                continue
            if not is_valid_solana_address(token.address):
                self.logger.debug(f"Skipping {token.symbol}: invalid address {token.address}")
                continue
            if self.max_age_minutes is not None and token.created_at is not None:
                age_minutes = (now - token.created_at).total_seconds() / 60
                if age_minutes > self.max_age_minutes:
                    self.logger.debug(
                        f"Skipping {token.symbol} - too old: {age_minutes:.0f}min (max: {self.max_age_minutes}min)"
                    )
                    continue
            self.seen.add(token.address)
            fresh.append(token)

        if fresh:
            self.logger.info(f"Discovered {len(fresh)} new tokens from DexScreener")
        return fresh
