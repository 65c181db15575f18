from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from . import __version__
from .config import settings
from .error_handling import ExternalAPIError, InvalidInputError
from .logging_config import configure_logging
from .routes import router
from .services import Services, build_services

configure_logging()

logger = structlog.get_logger()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "status_code": status_code, "timestamp": _timestamp()},
    )


def create_app(services: Optional[Services] = None, start_background_tasks: bool = True) -> FastAPI:
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        startup_start_time = time.time()
        logger.info("Starting WalletGuard")

        if start_background_tasks:
            await services.task_manager.start()

        logger.info("WalletGuard ready",
                    startup_time_seconds=round(time.time() - startup_start_time, 2))

        yield

        logger.info("Shutting down WalletGuard")
        try:
            await services.task_manager.stop()
            await services.data_provider.aclose()
        except Exception as e:
            logger.error("Error during shutdown", error=str(e))
        logger.info("WalletGuard shutdown complete")

    app = FastAPI(
        title="WalletGuard",
        description="Wallet risk scoring and alert monitoring service",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.info("Request completed",
                    method=request.method,
                    url=str(request.url),
                    status_code=response.status_code,
                    process_time=round(process_time, 3))

        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(request: Request, exc: InvalidInputError):
        logger.warning("Invalid input", method=request.method, url=str(request.url), error=str(exc))
        return _error_response(400, f"Validation failed: {exc}")

    @app.exception_handler(ExternalAPIError)
    async def external_api_handler(request: Request, exc: ExternalAPIError):
        logger.error("Data provider unavailable", method=request.method, url=str(request.url), error=str(exc))
        return _error_response(503, "External service unavailable")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning("HTTP exception",
                       method=request.method,
                       url=str(request.url),
                       status_code=exc.status_code,
                       detail=exc.detail)
        return _error_response(exc.status_code, exc.detail)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors"""
        logger.error("Unhandled exception",
                     method=request.method,
                     url=str(request.url),
                     error=str(exc),
                     error_type=type(exc).__name__)
        return _error_response(500, "Internal server error")

    app.include_router(router)

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": "WalletGuard",
            "timestamp": _timestamp(),
            "background_tasks": services.task_manager.status(),
            "cache_entries": len(services.cache),
            "tracked_alerts": len(services.alert_store.alerts),
            "errors_last_hour": services.error_collector.get_error_summary(hours=1)["total_errors"],
        }

    @app.get("/")
    async def root():
        """Root endpoint with service information"""
        return {
            "service": "WalletGuard",
            "version": __version__,
            "environment": settings.ENV,
            "status": "operational",
            "timestamp": _timestamp(),
            "endpoints": {
                "health": "/health",
                "alerts": "/api/alerts",
                "portfolio_risk": "/api/risk/portfolio",
                "transaction_risk": "/api/risk/transaction",
                "wallet_risk": "/api/risk/{address}",
                "wallet": "/api/wallet/{address}",
                "cache": "/api/cache/stats",
                "docs": "/docs",
            },
        }

    return app


app = create_app()
