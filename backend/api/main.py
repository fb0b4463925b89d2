"""
FieldStock API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from pickups.errors import PickupError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("FieldStock API starting up", version=settings.app_version)
    yield
    logger.info("FieldStock API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Stock pickup lifecycle and dealer inventory reservations for field marketers",
    lifespan=lifespan,
)


@app.exception_handler(PickupError)
async def pickup_error_handler(request: Request, exc: PickupError):
    """Render domain errors as {"detail": {"code", "message", ...context}}."""
    logger.info("api.pickup_error", path=request.url.path, code=exc.code, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import notifications, pickups, stock
from realtime.websocket import router as ws_router

app.include_router(pickups.router)
app.include_router(stock.router)
app.include_router(notifications.router)
app.include_router(ws_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
