from __future__ import annotations

# ---------- imports ----------
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.cache import MemoryStore
from app.core.config import settings
from app.db import get_database, init_database

# middleware (puts the cart user on request.state)
from app.deps.auth import attach_user_middleware

# domain routers
from app.api.cart import router as cart_router
from app.api.products import get_products_router
from app.api.realtime import router as ws_router
from app.api import settings as settings_api

from app.schemas.settings import ShopStatus
from app.services.realtime import ConnectionHub, ShopStatusBroadcaster, run_periodically
from app.services.time_settings import shop_status_or_default

# ---------- ENV ----------
load_dotenv()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("app")


def _current_status(now: datetime) -> ShopStatus:
    status, _ = shop_status_or_default(get_database(), now)
    return status


# ---------- background jobs ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    await asyncio.to_thread(init_database)
    hub: ConnectionHub = app.state.hub
    broadcaster = ShopStatusBroadcaster(hub, _current_status)

    async def sweep_sockets():
        removed = hub.user_map.sweep()
        if removed:
            logger.debug("socket map sweep: %d idle entries dropped", removed)

    tasks = [
        asyncio.create_task(run_periodically(
            settings.SHOP_STATUS_BROADCAST_SECONDS, broadcaster.tick, "shop-status-broadcast")),
        asyncio.create_task(run_periodically(
            settings.SOCKET_SWEEP_SECONDS, sweep_sockets, "socket-sweep")),
    ]
    logger.info("started (env=%s)", settings.APP_ENV)
    try:
        yield
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


# ---------- FastAPI ----------
app = FastAPI(title="La Patisserie Storefront", lifespan=lifespan)

origins = settings.allowed_origins
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials=False,
    )

# cart user -> request.state
app.middleware("http")(attach_user_middleware)

# user id -> connection id, idle entries expire
app.state.hub = ConnectionHub(MemoryStore(ttl=settings.SOCKET_IDLE_TTL_SECONDS))

# routers
app.include_router(cart_router, prefix="/cart")
app.include_router(get_products_router(), prefix="/products")
app.include_router(settings_api.router, prefix="/time-settings")
app.include_router(settings_api.status_router)
app.include_router(ws_router)


# ---------- META ----------
@app.get("/health")
def health():
    return {"ok": True, "env": settings.APP_ENV}


# ---------- ROOT ----------
@app.get("/", include_in_schema=False)
async def root():
    return {"name": "La Patisserie Storefront", "docs": "/docs"}
