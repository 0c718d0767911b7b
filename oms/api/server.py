"""
OMS Backend - Main FastAPI Application

Exposes the order routes, a service banner and a metrics endpoint.
Errors from the service layer are mapped to JSON responses here.
"""

import time as _time
import traceback
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

from oms import __version__
from oms.api.dependencies import get_order_service
from oms.api.orders import router as orders_router
from oms.core.config import get_config
from oms.errors import (
    OrderNotFoundError,
    OrderValidationError,
    ServiceUnavailableError,
    StoreConnectionError,
)
from oms.models import validation_errors
from oms.service import OrderService, StoreMode
from oms.utils.logger import get_logger

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the order service (engine, tables, stores, cache) once at startup.
    A failure here is logged; the first request retries the bootstrap.
    """
    try:
        service = app.dependency_overrides.get(get_order_service, get_order_service)()
        logger.info(f"OMS backend starting in {service.resolve_mode().value} mode")
    except Exception as e:
        logger.warning(f"Order service bootstrap failed at startup: {e}")
    yield


app = FastAPI(
    title="OMS Backend",
    description="Order management API with cached reads and a local fallback store",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class LatencyLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every non-OPTIONS request with method, path, status, and duration_ms."""

    async def dispatch(self, request: StarletteRequest, call_next) -> StarletteResponse:
        if request.method == "OPTIONS":
            return await call_next(request)
        t0 = _time.perf_counter()
        response = await call_next(request)
        duration_ms = round((_time.perf_counter() - t0) * 1000, 1)
        logger.info(
            "[LATENCY] %s %s -> %d  %.1fms",
            request.method, request.url.path, response.status_code, duration_ms,
        )
        return response


app.add_middleware(LatencyLoggingMiddleware)

app.include_router(orders_router)


#
# Error mapping
#

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"message": "Invalid order data", "errors": validation_errors(exc)},
    )


@app.exception_handler(OrderValidationError)
async def order_validation_handler(request: Request, exc: OrderValidationError):
    return JSONResponse(status_code=400, content={"message": exc.msg, "errors": exc.errors})


@app.exception_handler(OrderNotFoundError)
async def not_found_handler(request: Request, exc: OrderNotFoundError):
    return JSONResponse(status_code=404, content={"message": exc.msg})


@app.exception_handler(ServiceUnavailableError)
@app.exception_handler(StoreConnectionError)
async def unavailable_handler(request: Request, exc: Exception):
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"message": "Service temporarily unavailable", "error": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and return 500 with the underlying error string."""
    logger.error("Unhandled exception: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"message": "Internal server error", "error": str(exc)},
    )


#
# Service endpoints
#

@app.get("/")
def root(service: OrderService = Depends(get_order_service)):
    """Service banner with the store currently serving requests."""
    mode = service.resolve_mode()
    return {
        "service": "OMS Backend",
        "version": __version__,
        "status": "operational" if mode != StoreMode.UNAVAILABLE else "degraded",
        "database": "connected" if mode == StoreMode.PRIMARY else "disconnected",
        "mode": mode.value,
    }


@app.get("/metrics")
def get_metrics(service: OrderService = Depends(get_order_service)):
    """Latency percentiles, cache hit rate, error and fallback counters."""
    return service.metrics.get_summary()


#
# Development Server
#

if __name__ == "__main__":
    uvicorn.run(
        "oms.api.server:app",
        host="0.0.0.0",
        port=5000,
        reload=True
    )
