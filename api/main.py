"""
FastAPI application for the bank-to-ledger sync.

This is the main API application that exposes the sync session, the review
edits, the rules and the settings. Domain exceptions raised by the services
are turned into HTTP responses by the handlers registered here.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from api.routers import rules, session, settings, transactions
from api.services.session_manager import InvalidSessionStateError, SessionManagerError
from api.services.sync_orchestrator import SyncStepError, get_orchestrator
from api.services.validator import ValidationFailed
from core.store import RuleNotFoundError, StoreError


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager."""
    logger.info("Starting budget sync API server...")
    yield
    logger.info("Shutting down budget sync API server...")


# Create FastAPI application
app = FastAPI(
    title="Budget Sync API",
    description="API for reconciling bank transactions with a budgeting ledger",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS for local use
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:*", "http://127.0.0.1:*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(session.router)
app.include_router(transactions.router)
app.include_router(rules.router)
app.include_router(settings.router)


@app.get("/")
async def root():
    """API root endpoint."""
    return {
        "message": "Budget Sync API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "sync": "/sync",
            "transactions": "/transactions",
            "rules": "/rules",
            "settings": "/settings",
            "docs": "/docs"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    sessions = get_orchestrator().sessions
    with sessions.lock:
        state = sessions.get_session().session.state.value if sessions.has_session() else None
        return {
            "status": "healthy",
            "session_state": state,
            "status_counts": sessions.status_counts()
        }


@app.exception_handler(ValidationFailed)
async def validation_failed_handler(request: Request, exc: ValidationFailed):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation failed", "issues": [issue.to_dict() for issue in exc.issues]}
    )


@app.exception_handler(InvalidSessionStateError)
async def invalid_state_handler(request: Request, exc: InvalidSessionStateError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "state": exc.actual.value, "expected": exc.expected}
    )


@app.exception_handler(SessionManagerError)
async def session_error_handler(request: Request, exc: SessionManagerError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(RuleNotFoundError)
async def rule_not_found_handler(request: Request, exc: RuleNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(SyncStepError)
async def sync_step_handler(request: Request, exc: SyncStepError):
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc), "step": exc.step, "reason": exc.reason}
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store error: %s", exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error occurred"}
    )


def run_server(host: str = "127.0.0.1", port: int = 8000, log_level: str = "info"):
    """
    Run the API server.

    Args:
        host: Host to bind to
        port: Port to listen on
        log_level: uvicorn log level
    """
    logger.info("Starting budget sync API server on %s:%d", host, port)

    uvicorn.run(
        app,
        host=host,
        port=port,
        reload=False,
        access_log=True,
        log_level=log_level
    )
