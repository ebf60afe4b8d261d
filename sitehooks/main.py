import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as redis
import sentry_sdk
from fastapi import FastAPI
from sqlalchemy import text

from sitehooks import __version__
from sitehooks.config import settings
from sitehooks.database import async_session_factory, engine
from sitehooks.services.dispatcher import WebhookDispatcher
from sitehooks.services.scheduler import DeliveryScheduler

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Initialize Sentry
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.2 if settings.ENVIRONMENT == "production" else 1.0,
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection and connect Redis
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))

    app.state.redis = redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    await app.state.redis.ping()

    app.state.http_client = httpx.AsyncClient(
        timeout=settings.WEBHOOK_REQUEST_TIMEOUT_SECONDS,
        follow_redirects=False,
    )
    dispatcher = WebhookDispatcher(
        async_session_factory,
        app.state.http_client,
        redis=app.state.redis,
    )
    app.state.scheduler = DeliveryScheduler(dispatcher, async_session_factory)
    if settings.WEBHOOK_DISPATCH_ENABLED:
        await app.state.scheduler.start()

    yield

    # Shutdown
    await app.state.scheduler.stop()
    await app.state.http_client.aclose()
    await app.state.redis.close()
    await engine.dispose()


app = FastAPI(
    title="Sitehooks",
    version=__version__,
    lifespan=lifespan,
)

# Middleware
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402

from sitehooks.middleware.rate_limit import RateLimitMiddleware  # noqa: E402

app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from sitehooks.middleware.error_handler import register_error_handlers  # noqa: E402

register_error_handlers(app)

# Routers
from sitehooks.routers.webhooks import router as webhooks_router  # noqa: E402

app.include_router(webhooks_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
