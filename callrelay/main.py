"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from callrelay.api import calls, health, outbound, relay, tools
from callrelay.core.dependencies import close_http_client, get_ticketing_bridge
from callrelay.core.logging import setup_logging
from callrelay.db.database import dispose_db, init_db
from callrelay.services.ticketing.bridge import TicketingError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    try:
        await get_ticketing_bridge().initialize()
    except TicketingError as e:
        logger.error(f"[STARTUP] Ticketing bridge initialization failed: {e}", exc_info=True)
    yield
    # Shutdown
    await close_http_client()
    await dispose_db()


app = FastAPI(
    title="Call Relay",
    description="Outbound voice agent calls bridged to a contact center",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(outbound.router, tags=["calls"])
app.include_router(relay.router, tags=["relay"])
app.include_router(tools.router, tags=["tools"])
app.include_router(calls.router, tags=["calls"])


@app.get("/")
async def root():
    return {"message": "Call Relay API", "version": "0.1.0"}
