"""StockKeeper FastAPI application.

Serves the inventory, ordering and payments routers from one process and,
unless disabled, runs the reservation sweeper in the background.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from inventory.api import inventory_router
from inventory.stock.sweeper import ReservationSweeper
from ordering.api import cart_router, order_router
from payments.api import payment_router
from shared.config import get_settings
from shared.database import new_id, setup_db
from shared.http import register_exception_handlers
from shared.logging import add_context, clear_context, configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(log_dir=None if settings.env == "test" else Path("logs"))
    setup_db()

    sweeper = None
    if settings.sweeper_enabled:
        sweeper = ReservationSweeper()
        sweeper.start()
    app.state.sweeper = sweeper
    logger.info("Application started", env=settings.env, sweeper_enabled=settings.sweeper_enabled)

    yield

    if sweeper is not None:
        await sweeper.stop()
    logger.info("Application stopped")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="StockKeeper API",
    description="Stock reservations, orders and payment webhooks",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    """Tag every log line written while serving a request with its id."""
    clear_context()
    request_id = request.headers.get("x-request-id") or new_id()
    add_context(request_id=request_id, method=request.method, path=request.url.path)
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(inventory_router)
app.include_router(cart_router)
app.include_router(order_router)
app.include_router(payment_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    sweeper = getattr(app.state, "sweeper", None)
    return JSONResponse(
        content={
            "status": "ok",
            "sweeper": {
                "running": bool(sweeper and sweeper.is_running),
                "sweeps": sweeper.sweeps if sweeper else 0,
                "expired_total": sweeper.expired_total if sweeper else 0,
            },
        }
    )
