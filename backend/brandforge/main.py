"""
BrandForge Agent API

FastAPI application for the autonomous brand design agent.

Features:
- Agent loop streamed over Server-Sent Events
- Brand style profile extraction from moodboards
- Compliance audits against a style profile
- LangSmith tracing for observability
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from brandforge.config import get_settings, setup_langsmith
from brandforge.core.exceptions import (
    BrandForgeError,
    ConfigurationError,
    InvalidImageError,
    MalformedResponseError,
    TransientRemoteError,
    TurnExchangeError,
)
from brandforge.models.schemas import HealthResponse
from brandforge.routes import agent


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# Get settings
settings = get_settings()

# Setup LangSmith tracing
langsmith_enabled = setup_langsmith()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    **BrandForge Agent API** - autonomous on-brand image generation.

    ## Workflow
    1. Send a request and a moodboard → `/api/v1/agent` (SSE)
    2. The agent extracts the brand style, generates, audits and refines
    3. Download the final image → `/api/v1/agent/artifacts/{id}`

    ## Models
    - `gemini-3-flash-preview`: agent reasoning, style analysis, audits
    - `gemini-3-pro-image-preview`: image generation
    """,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(agent.router, prefix=settings.api_prefix)


# ============ Exception Handlers ============

def _error_response(status_code: int, exc: BrandForgeError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "error_code": exc.error_code})


@app.exception_handler(InvalidImageError)
async def invalid_image_error_handler(request: Request, exc: InvalidImageError):
    return _error_response(400, exc)


@app.exception_handler(MalformedResponseError)
async def malformed_response_error_handler(request: Request, exc: MalformedResponseError):
    return _error_response(502, exc)


@app.exception_handler(TransientRemoteError)
async def transient_remote_error_handler(request: Request, exc: TransientRemoteError):
    return _error_response(503, exc)


@app.exception_handler(TurnExchangeError)
async def turn_exchange_error_handler(request: Request, exc: TurnExchangeError):
    return _error_response(502, exc)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return _error_response(500, exc)


@app.exception_handler(BrandForgeError)
async def brandforge_error_handler(request: Request, exc: BrandForgeError):
    """Handle generic BrandForge errors."""
    return _error_response(500, exc)


# ============ Health Check ============

@app.get("/", response_model=HealthResponse, tags=["Health"])
async def root():
    return HealthResponse(
        status="ok",
        version=settings.app_version,
        message="BrandForge Agent API is running. Visit /docs for API documentation.",
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.app_version)


# ============ Run with Uvicorn ============

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "brandforge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
