"""
Upstream HTTP clients.

ExchangeInfoClient talks to the exchange's POST /info endpoint;
AggregatorClient talks to the DEX Screener REST API. Both share one lazily
created aiohttp session with a bounded total timeout, and convert every
transport failure, timeout, non-2xx status or undecodable body into
UpstreamError.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote
import asyncio
import logging

import aiohttp

from hyperdash.config import UpstreamConfig
from hyperdash.proxy.errors import UpstreamError

LOG = logging.getLogger(__name__)


class _JsonHttpClient:
    """aiohttp wrapper returning decoded JSON bodies"""

    name = "upstream"

    def __init__(self, config: Optional[UpstreamConfig] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.config = config or UpstreamConfig()
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.http_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        session = self._get_session()
        try:
            async with session.request(method, url, **kwargs) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise UpstreamError(f"{self.name} returned HTTP {resp.status}: {body[:200]}")
                return await resp.json(content_type=None)
        except asyncio.TimeoutError:
            raise UpstreamError(
                f"{self.name} request timed out after {self.config.http_timeout_seconds}s"
            )
        except aiohttp.ClientError as e:
            raise UpstreamError(f"{self.name} request failed: {e}")
        except ValueError as e:
            raise UpstreamError(f"{self.name} returned invalid JSON: {e}")

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class ExchangeInfoClient(_JsonHttpClient):
    """Client for the exchange info endpoint"""

    name = "exchange"

    async def post_info(self, payload: Dict[str, Any]) -> Any:
        LOG.debug("POST %s %s", self.config.info_url, payload)
        return await self._request("POST", self.config.info_url, json=payload)

    async def all_mids(self) -> Dict[str, str]:
        """Mid price per symbol, as decimal strings"""
        mids = await self.post_info({"type": "allMids"})
        if not isinstance(mids, dict):
            raise UpstreamError("exchange returned malformed allMids response")
        return mids

    async def spot_meta(self) -> Dict[str, Any]:
        meta = await self.post_info({"type": "spotMeta"})
        if not isinstance(meta, dict):
            raise UpstreamError("exchange returned malformed spotMeta response")
        return meta


class AggregatorClient(_JsonHttpClient):
    """Client for the DEX Screener pair search and token-pairs endpoints"""

    name = "aggregator"

    async def search(self, query: str) -> List[Dict[str, Any]]:
        """Pairs matching a free-text query; empty list when nothing matches"""
        url = f"{self.config.aggregator_url}/latest/dex/search"
        data = await self._request("GET", url, params={"q": query})
        pairs = (data or {}).get("pairs") if isinstance(data, dict) else None
        return pairs or []

    async def token_pairs(self, chain_id: str, token_address: str) -> List[Dict[str, Any]]:
        """Pairs trading a token on a given chain"""
        url = (
            f"{self.config.aggregator_url}/token-pairs/v1/"
            f"{quote(chain_id, safe='')}/{quote(token_address, safe='')}"
        )
        data = await self._request("GET", url)
        return data if isinstance(data, list) else []
