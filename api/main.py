"""
Motoparts Order Lifecycle API - Main Application.

FastAPI application with CORS enabled for the storefront and staff dashboard.
Business errors raised by the services are rendered as ErrorResponse bodies
with the error's own status code.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import __version__
from api.models import ErrorResponse
from domain.errors import OrderLifecycleError

logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title="Motoparts Order Lifecycle API",
    description="Orders, stock ledger, discounts and refunds for the motorcycle parts store",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS - Allow all origins for development
# TODO: Restrict origins to the storefront and dashboard hosts in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, status_code=status_code)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(OrderLifecycleError)
async def handle_order_lifecycle_error(request: Request, exc: OrderLifecycleError):
    return _error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(ValueError)
async def handle_value_error(request: Request, exc: ValueError):
    return _error_response(400, "invalid_request", str(exc))


@app.exception_handler(RuntimeError)
async def handle_runtime_error(request: Request, exc: RuntimeError):
    logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
    return _error_response(500, "persistence_error", str(exc))


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "motoparts-order-lifecycle-api"
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Motoparts Order Lifecycle API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import discounts, inventory, orders

app.include_router(orders.router, prefix="/api/v1", tags=["Orders"])
app.include_router(inventory.router, prefix="/api/v1", tags=["Inventory"])
app.include_router(discounts.router, prefix="/api/v1", tags=["Discounts"])
