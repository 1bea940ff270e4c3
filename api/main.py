"""
FastAPI application for the MTR service.

GOVERNANCE:
- All automated findings reviewed by a licensed pharmacist
- NO auto-applied therapy changes
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import assessment_router, ledger_router, reviews_router
from assessment import RuleEngineError
from config import get_settings
from workflow import (
    ConflictError,
    IdentityRecoveryError,
    PersistenceError,
    PreconditionError,
    ReviewNotFoundError,
    ValidationError,
    WorkflowError,
    get_registry,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger("mtr")

# Most specific first
ERROR_STATUS = [
    (ReviewNotFoundError, 404),
    (ValidationError, 422),
    (ConflictError, 409),
    (PreconditionError, 400),
    (IdentityRecoveryError, 500),
    (PersistenceError, 503),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry = get_registry()
    if settings.autosave_enabled:
        registry.autosaver.start()
    yield
    await registry.autosaver.stop()


app = FastAPI(
    title="MTR API",
    description="Medication therapy review workflow and drug therapy problem screening",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware for browser UIs
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(reviews_router)
app.include_router(assessment_router)
app.include_router(ledger_router)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)), 500
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ConflictError) and exc.session_id:
        body["session_id"] = exc.session_id
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(RuleEngineError)
async def rule_engine_error_handler(request: Request, exc: RuleEngineError):
    return JSONResponse(
        status_code=422, content={"detail": str(exc), "error": type(exc).__name__}
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "mtr"}


@app.get("/")
def root():
    """Root endpoint with API info."""
    return {
        "service": "MTR API",
        "version": "1.0.0",
        "governance": "All automated findings reviewed by a licensed pharmacist",
        "endpoints": {
            "reviews": "/v1/reviews",
            "assessment": "/v1/assessment/check",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
    )
