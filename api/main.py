"""
FastAPI server for the mapping engine.

Provides REST API endpoints for:
- Running a form's mapping flow
- Validating custom logic expressions

Usage:
    uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.logger import get_logger
from api.router import router
from mapping_engine.runtime.audit import LoggerAuditSink

logger = get_logger("api.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting mapping engine API server...")
    if not hasattr(app.state, "audit_sink"):
        app.state.audit_sink = LoggerAuditSink()
    if not hasattr(app.state, "node_mapping_store"):
        app.state.node_mapping_store = None
    yield
    logger.info("Mapping engine API server shutting down...")


app = FastAPI(
    title="Mapping Engine API",
    description="REST API for executing form mapping flows",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


# Exception handler to ensure CORS headers on errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler that ensures CORS headers are included."""
    error_logger = get_logger("api.main.errors")
    error_logger.error(f"Unhandled exception: {exc}", exc_info=True)

    response = JSONResponse(
        status_code=500,
        content={"error": str(exc) or "Failed to execute flow"},
    )
    origin = request.headers.get("origin")
    response.headers["Access-Control-Allow-Origin"] = origin or "*"
    if origin:
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


# =============================================================================
# Health & Info Endpoints
# =============================================================================

@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "server": "Mapping Engine API",
        "version": "1.0.0"
    }


# =============================================================================
# Entry point for running directly
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
