from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import time

from pollboard.core.config import settings, uses_memory_store
from pollboard.core.db import check_database_connection, create_tables, health_check
from pollboard.utils.exceptions import CustomException
from pollboard.utils.logger import RequestLogger, setup_logging
from pollboard.utils.response_helper import error_response, exception_response

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)
request_logger = RequestLogger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting PollBoard application...")

    try:
        if uses_memory_store():
            logger.warning("Using the in-memory store - data is lost on restart")
        else:
            # Check database connection
            if not await check_database_connection():
                logger.error("Failed to connect to database")
                raise RuntimeError("Database connection failed")

            # Create database tables
            await create_tables()
            logger.info("Database tables created/verified")

        logger.info("Application startup completed successfully")

    except Exception as e:
        logger.error(f"Application startup failed: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down PollBoard application...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Create polls, vote on them and see the results",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time to response headers and log the request."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    request_logger.log_request(
        request.method,
        request.url.path,
        response.status_code,
        process_time
    )
    return response


# Global exception handlers
@app.exception_handler(CustomException)
async def custom_exception_handler(request: Request, exc: CustomException):
    """Handle custom exceptions."""
    return exception_response(exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return error_response(
        message=str(exc.detail),
        status_code=exc.status_code,
        error="http_error"
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors, reported as 400."""
    return error_response(
        message="Invalid request",
        status_code=400,
        error="validation_error",
        details={"errors": [error.get("msg") for error in exc.errors()]}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "An internal server error occurred",
            "data": None,
            "error": "internal_server_error",
            "details": None
        }
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check_endpoint():
    """
    Health check endpoint for monitoring.
    """
    if uses_memory_store():
        store_health = {"status": "healthy", "database": "in-memory"}
    else:
        store_health = await health_check()

    overall_status = store_health["status"]

    return JSONResponse(
        status_code=200 if overall_status == "healthy" else 503,
        content={
            "status": overall_status,
            "timestamp": time.time(),
            "version": settings.app_version,
            "environment": settings.environment,
            "services": {
                "store": store_health
            }
        }
    )


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "status": "running",
        "docs_url": "/docs" if settings.debug else "disabled",
        "health_check": "/health"
    }


# Include API routes
from pollboard.routes import poll_routes

app.include_router(poll_routes.router, prefix="/polls", tags=["Polls"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pollboard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info" if settings.debug else "warning"
    )
