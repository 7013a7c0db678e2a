import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.api.v1 import auctions, auth, bids, wallet
from marketplace.core.config import settings
from marketplace.core.database import async_session_maker
from marketplace.core.redis import close_redis, get_redis, redis_available
from marketplace.middleware.metrics import (
    PrometheusMiddleware,
    metrics_endpoint,
    record_settlement,
)
from marketplace.middleware.rate_limit import RateLimitMiddleware
from marketplace.services.errors import AlreadyEnded, MarketplaceError
from marketplace.services.redis_service import RedisService
from marketplace.services.settlement_service import SettlementService

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Background task control
_settlement_sweep_task: asyncio.Task | None = None


async def settle_expired_auctions() -> int:
    """Settle every auction past its end time. Returns the number settled."""
    redis_service = RedisService(await get_redis())

    async with async_session_maker() as db:
        expired = await SettlementService(db, redis_service).get_auctions_to_settle()
        auction_ids = [auction.auction_id for auction in expired]

    settled = 0
    for auction_id in auction_ids:
        # One session per auction so a failure cannot leak into the next settlement
        async with async_session_maker() as db:
            try:
                result = await SettlementService(db, redis_service).settle_expired(auction_id)
            except AlreadyEnded:
                logger.info(f"Auction {auction_id} was already settled")
                record_settlement("expired", "skipped")
            except MarketplaceError as e:
                logger.warning(f"Could not settle auction {auction_id}: {e.code} {e.message}")
                record_settlement("expired", "error")
            else:
                settled += 1
                record_settlement("expired", "settled", refunds=result.refund_count)
    return settled


async def settlement_sweep_loop():
    """Background task to settle auctions whose end time has passed."""
    while True:
        try:
            settled = await settle_expired_auctions()
            if settled:
                logger.info(f"Settlement sweep closed {settled} auctions")
            await asyncio.sleep(settings.SETTLEMENT_SWEEP_INTERVAL_SECONDS)

        except asyncio.CancelledError:
            logger.info("Settlement sweep loop cancelled")
            break
        except Exception as e:
            logger.error(f"Error in settlement sweep loop: {e}")
            await asyncio.sleep(settings.SETTLEMENT_SWEEP_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    global _settlement_sweep_task

    logger.info("Starting settlement sweep...")
    _settlement_sweep_task = asyncio.create_task(settlement_sweep_loop())

    yield

    logger.info("Stopping background tasks")
    if _settlement_sweep_task:
        _settlement_sweep_task.cancel()
        try:
            await _settlement_sweep_task
        except asyncio.CancelledError:
            pass

    await close_redis()


app = FastAPI(
    title="Auction Marketplace",
    version="1.0.0",
    description="Online auctions with fund holds and settlement",
    lifespan=lifespan,
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    """Render rejected operations as {"detail": {"code", "message"}}."""
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.to_detail()},
        headers=headers,
    )


# Prometheus Metrics Middleware (must be first to capture all requests)
app.add_middleware(PrometheusMiddleware)

app.add_middleware(
    RateLimitMiddleware,
    user_limit=settings.RATE_LIMIT_USER,
    ip_limit=settings.RATE_LIMIT_IP,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(wallet.router, prefix="/api/v1/wallet", tags=["wallet"])
app.include_router(auctions.router, prefix="/api/v1/auctions", tags=["auctions"])
app.include_router(bids.router, prefix="/api/v1/bids", tags=["bids"])


@app.get("/health")
async def health_check():
    """Health check endpoint. Bids and settlements fail while Redis is down."""
    if not await redis_available():
        return JSONResponse(status_code=503, content={"status": "degraded", "redis": "down"})
    return {"status": "healthy", "redis": "up"}


app.add_route("/metrics", metrics_endpoint)
