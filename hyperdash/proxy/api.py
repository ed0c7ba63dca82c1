"""
REST Proxy Routes

FastAPI routes for market aggregation, spot pairs, DEX Screener passthroughs,
positions and the rate-limited unified info endpoint. Every route answers
with the {ok, data?, error?, timestamp, source?} envelope and never lets an
exception escape.
"""

from typing import Any, Optional
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from hyperdash.proxy.errors import GatewayError, RateLimitExceeded
from hyperdash.proxy.rate_limiter import RateLimiter
from hyperdash.proxy.schemas import ApiEnvelope, InfoRequest, PositionsRequest
from hyperdash.proxy.service import SOURCE_EXCHANGE, SOURCE_MARKETS, MarketDataService

LOG = logging.getLogger(__name__)

router = APIRouter(tags=["Proxy"])


# ============================================================================
# HELPERS
# ============================================================================

def envelope_response(ok: bool, data: Any = None, error: Optional[str] = None,
                      source: Optional[str] = None, status_code: int = 200,
                      headers: Optional[dict] = None) -> JSONResponse:
    envelope = ApiEnvelope(ok=ok, data=data, error=error, source=source)
    return JSONResponse(content=envelope.to_payload(), status_code=status_code, headers=headers)


def error_response(error: GatewayError) -> JSONResponse:
    headers = None
    if isinstance(error, RateLimitExceeded):
        headers = {"Retry-After": str(max(1, (error.retry_after_ms + 999) // 1000))}
    return envelope_response(False, error=error.message, status_code=error.status_code, headers=headers)


def get_service(request: Request) -> MarketDataService:
    return request.app.state.market_service


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.get("/api/markets")
async def get_markets(request: Request):
    """Aggregated market summaries: native token first, then configured tokens"""
    try:
        markets = await get_service(request).get_markets()
        return envelope_response(True, data=[m.to_dict() for m in markets], source=SOURCE_MARKETS)
    except Exception as e:
        LOG.error(f"Error fetching market data: {e}", exc_info=True)
        return envelope_response(False, error="Failed to fetch market data", status_code=500)


@router.get("/api/spot/markets")
async def get_spot_markets(request: Request):
    """Canonical spot pair names (empty list if the exchange is unavailable)"""
    try:
        names, source = await get_service(request).get_spot_markets()
        return envelope_response(True, data=names, source=source)
    except Exception as e:
        LOG.error(f"Error fetching spot markets: {e}", exc_info=True)
        return envelope_response(True, data=[], source="error-fallback")


@router.get("/api/dexscreener/search/{query}")
async def search_pairs(query: str, request: Request):
    """DEX Screener free-text pair search"""
    try:
        pairs, source = await get_service(request).search_pairs(query)
        return envelope_response(True, data=[p.to_dict() for p in pairs], source=source)
    except GatewayError as e:
        LOG.error(f"DEX Screener API error: {e.message}")
        return envelope_response(False, error="Failed to fetch DEX Screener data", status_code=e.status_code)
    except Exception as e:
        LOG.error(f"DEX Screener search failed: {e}", exc_info=True)
        return envelope_response(False, error="Failed to fetch DEX Screener data", status_code=500)


@router.get("/api/dexscreener/token/{chain_id}/{token_address}")
async def get_token_pairs(chain_id: str, token_address: str, request: Request):
    """DEX Screener pairs for a token on a chain"""
    try:
        pairs, source = await get_service(request).get_token_pairs(chain_id, token_address)
        return envelope_response(True, data=[p.to_dict() for p in pairs], source=source)
    except GatewayError as e:
        LOG.error(f"DEX Screener API error: {e.message}")
        return envelope_response(False, error="Failed to fetch DEX Screener data", status_code=e.status_code)
    except Exception as e:
        LOG.error(f"DEX Screener token lookup failed: {e}", exc_info=True)
        return envelope_response(False, error="Failed to fetch DEX Screener data", status_code=500)


@router.post("/api/hyperliquid/positions")
async def get_positions(request: Request, body: Optional[PositionsRequest] = None):
    """Forward a {type, user} query to the exchange info endpoint"""
    body = body or PositionsRequest()
    try:
        data = await get_service(request).get_positions(body.type, body.user)
        return envelope_response(True, data=data, source=SOURCE_EXCHANGE)
    except GatewayError as e:
        LOG.error(f"Error fetching positions data: {e.message}")
        return envelope_response(
            False, error=f"Failed to fetch real positions data: {e.message}", status_code=e.status_code
        )
    except Exception as e:
        LOG.error(f"Positions request failed: {e}", exc_info=True)
        return envelope_response(False, error="Failed to fetch real positions data", status_code=500)


@router.post("/api/info")
async def info(request: Request):
    """
    Unified info endpoint (rate limited per client IP).

    Body: {"type": "candleSnapshot" | "spotCandleSnapshot" | "l2Book" | "spotL2Book",
           "req": {"coin" | "pair": str, "interval"?: str, "limit"?: int}}
    """
    ip = client_ip(request)
    decision = get_rate_limiter(request).check(ip)
    if not decision.allowed:
        return error_response(RateLimitExceeded(retry_after_ms=decision.retry_after_ms))

    try:
        try:
            payload = await request.json()
        except ValueError:
            payload = None

        info_request = InfoRequest.from_payload(payload)
        LOG.info(f"Info endpoint hit: {info_request.type} ({decision.count}/{decision.limit})")

        data, source = await get_service(request).get_info(info_request)
        return envelope_response(True, data=data, source=source)

    except GatewayError as e:
        LOG.warning(f"Info request rejected: {e.message}")
        return error_response(e)
    except Exception as e:
        LOG.error(f"Info endpoint error: {e}", exc_info=True)
        return envelope_response(False, error="Failed to process request", status_code=500)
