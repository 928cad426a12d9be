"""
Gemini Gateway Application Entry Point

FastAPI application main entry, including router registration and application configuration.
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gemini_gateway import __version__
from gemini_gateway.api.proxy import openai_router
from gemini_gateway.common.errors import AppError
from gemini_gateway.config import get_settings
from gemini_gateway.logging_config import setup_logging

logger = logging.getLogger(__name__)

# Initialize logging configuration
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application Lifecycle Management

    The gateway holds no connections between requests; startup and shutdown
    are only logged.
    """
    settings = get_settings()
    logger.info(
        "%s %s started: upstream=%s",
        settings.APP_NAME,
        __version__,
        settings.gemini_api_root,
    )
    yield
    logger.info("%s stopped", settings.APP_NAME)


# Create FastAPI application
settings = get_settings()

app = FastAPI(
    title=settings.APP_NAME,
    description="OpenAI-compatible gateway for the Google Gemini API",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
# Parse ALLOWED_ORIGINS from comma-separated string to list
allowed_origins = [
    origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()
]

# Credentials stay disabled so a "*" origin is sent literally
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global Exception Handler
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """
    Handle application custom exceptions

    Error details are only returned in debug mode.
    """
    settings = get_settings()
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(include_details=settings.DEBUG),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle uncaught exceptions

    The stack trace is always logged and only returned in debug mode.
    """
    settings = get_settings()
    logger.error(
        "Uncaught exception: %s\nPath: %s\nTraceback:\n%s",
        str(exc),
        request.url.path,
        traceback.format_exc(),
    )

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": str(exc),
                    "type": type(exc).__name__,
                    "code": "internal_error",
                    "traceback": traceback.format_exc().split("\n"),
                }
            },
        )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "message": "Internal server error",
                "type": "internal_error",
                "code": "internal_error",
            }
        },
    )


# Health Check Endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health Check

    Used for service liveness probe.
    """
    return {"status": "healthy"}


@app.get("/", tags=["Health"])
async def root():
    """Basic service information"""
    return {
        "name": settings.APP_NAME,
        "version": __version__,
        "description": "OpenAI-compatible gateway for the Google Gemini API",
    }


# Register Proxy Routers
app.include_router(openai_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gemini_gateway.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
