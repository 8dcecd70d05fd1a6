# pulse_backend/main.py
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pulse_backend import __version__
from pulse_backend.api.health_stream import router as health_stream_router
from pulse_backend.api.subscriptions import router as subscriptions_router
from pulse_backend.api.system_health import router as system_health_router
from pulse_backend.market_data import market_router
from pulse_backend.market_data.adapters.finnhub_adapter import FinnhubDataProvider
from pulse_backend.market_data.cache import MarketDataCache
from pulse_backend.market_data.market_data_service import MarketDataService
from pulse_backend.market_data.provider_health import HealthThresholds, ProviderHealthTracker
from pulse_backend.middleware.jwt_auth import JWTAuthMiddleware
from pulse_backend.middleware.rate_limiter import FixedWindowRateLimiter, RateLimitMiddleware
from pulse_backend.services.jwt_service import JWTService
from pulse_backend.services.stripe_service import StripeBillingService
from pulse_backend.utils.clock import Clock, now_ms
from pulse_backend.utils.config import Settings, load_settings, validate_env_vars
from pulse_backend.utils.logger import log, log_error, log_warning


def build_limiters(settings: Settings, clock: Clock = now_ms):
    """One limiter per endpoint category, all sharing the configured window."""
    budgets = {
        "subscription_status": settings.subscription_status_max_requests,
        "checkout": settings.checkout_max_requests,
        "market_data": settings.market_data_max_requests,
        "general": settings.general_max_requests,
    }
    return {
        name: FixedWindowRateLimiter(
            max_requests=budget,
            window_ms=settings.rate_limit_window_ms,
            gc_threshold=settings.rate_limit_gc_threshold,
            clock=clock,
            name=name,
        )
        for name, budget in budgets.items()
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    env_validation = validate_env_vars()
    if env_validation["missing_required"]:
        message = f"Missing required environment variables: {', '.join(env_validation['missing_required'])}"
        if app.state.settings.environment == "production":
            log_error(f"❌ {message}")
        else:
            log_warning(f"⚠️  {message}")
    if env_validation["missing_recommended"]:
        log(f"Missing recommended environment variables: {', '.join(env_validation['missing_recommended'])}")

    if not app.state.market_client_available:
        log_warning("⚠️  FINNHUB_API_KEY not set - market data requests will fail")
    app.state.health_tracker.start()
    log(f"✅ Pulse backend {__version__} started ({app.state.settings.environment})")

    yield  # App is running

    # Shutdown
    app.state.health_tracker.close()
    close = getattr(app.state.market_data_service.client, "close", None)
    if close is not None:
        close()
    log("Pulse backend stopped")


def create_app(settings: Optional[Settings] = None, market_client=None, clock: Clock = now_ms) -> FastAPI:
    """
    Build the API with its shared components on app.state.

    Args:
        settings: Configuration; loaded from config/.env and the environment if omitted
        market_client: Upstream quote/candle client; Finnhub if omitted
        clock: Millisecond clock shared by the cache, tracker and limiters
    """
    settings = settings or load_settings()

    app = FastAPI(
        title="Pulse Backend API",
        version=__version__,
        description="Market data with caching, provider health tracking and rate-limited billing",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    health_tracker = ProviderHealthTracker(
        thresholds=HealthThresholds.from_settings(settings),
        clock=clock,
        auto_sweep=settings.health_auto_sweep,
    )
    cache = MarketDataCache(
        quotes_ttl_ms=settings.quotes_ttl_ms,
        candles_ttl_ms=settings.candles_ttl_ms,
        technical_ttl_ms=settings.technical_ttl_ms,
        clock=clock,
    )
    if market_client is None:
        market_client = FinnhubDataProvider(
            api_key=settings.finnhub_api_key,
            base_url=settings.finnhub_base_url,
            timeout=settings.upstream_timeout_seconds,
        )
    limiters = build_limiters(settings, clock)
    jwt_service = JWTService(settings.jwt_secret_key)

    app.state.settings = settings
    app.state.health_tracker = health_tracker
    app.state.market_data_service = MarketDataService(
        market_client, cache, health_tracker, max_retries=settings.upstream_max_retries
    )
    app.state.market_client_available = getattr(market_client, "is_available", lambda: True)()
    app.state.limiters = limiters
    app.state.jwt_service = jwt_service
    app.state.billing = StripeBillingService(settings.stripe_secret_key, settings.stripe_product_tiers)

    app.include_router(market_router.router, prefix="/api")
    app.include_router(subscriptions_router, prefix="/api")
    app.include_router(system_health_router, prefix="/api")
    app.include_router(health_stream_router, prefix="/api")

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__}

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        log_error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Last added runs first: CORS, then JWT (sets user_id), then rate limiting
    app.add_middleware(RateLimitMiddleware, limiters=limiters)
    app.add_middleware(JWTAuthMiddleware, jwt_service=jwt_service)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=3600,
    )

    return app


app = create_app()

if __name__ == "__main__":
    log("Starting Pulse backend at http://localhost:8000 ...")
    uvicorn.run("pulse_backend.main:app", host="0.0.0.0", port=8000, reload=True)
