# app/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

# --- Core Imports ---
from app.core.config import settings
from app.core.logging_setup import setup_logging, logger, trace_id_middleware
from app.core.exceptions import AppError, RepositoryError
from app.db.mongo_client import connect_to_mongo, close_mongo_connection, get_database
from app.core.redis_client import connect_redis, close_redis
from app.api.v1.api import api_router
from app.api.v1.deps import init_profile_cache
from app.modules.profiles.repository import MongoProfileStore
from app.services.audit_service import audit_service
from app.models.api_common import error_response

# --- Configure Logging ---
setup_logging()

# --- Rate Limiter ---
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.RATE_LIMIT_DEFAULT])

HTTP_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: "AUTHENTICATION_REQUIRED",
    status.HTTP_403_FORBIDDEN: "ACCESS_DENIED",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "N/A")


# --- Custom Exception Handlers ---
async def app_error_handler(request: Request, exc: AppError):
    log = logger.bind(trace_id=_trace_id(request), code=exc.code)
    if exc.status_code >= 500:
        log.error(f"Domain Exception: Type={type(exc).__name__}, Detail={exc.message}")
    else:
        log.warning(f"Domain Exception: Type={type(exc).__name__}, Detail={exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_response(exc.message, exc.code))


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.bind(trace_id=_trace_id(request)).warning(f"HTTP Exception: Status={exc.status_code}, Detail={exc.detail}")
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(str(exc.detail), code),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.bind(trace_id=_trace_id(request)).warning(f"Validation Error: Path={request.url.path}, Errors={exc.errors()}")
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", []) if part != "body")
    message = f"{location}: {first.get('msg', 'Invalid request')}" if location else first.get("msg", "Invalid request")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_response(message, "VALIDATION_ERROR"))


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    logger.bind(trace_id=_trace_id(request)).warning(f"Rate limit exceeded: {exc.detail}")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error_response(f"Rate limit exceeded: {exc.detail}", "RATE_LIMITED"),
    )


async def repository_error_handler(request: Request, exc: RepositoryError):
    logger.bind(trace_id=_trace_id(request)).error(f"Repository/Database Error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response("Internal server error", "INTERNAL_SERVER_ERROR"),
    )


async def generic_unhandled_exception_handler(request: Request, exc: Exception):
    trace_id = _trace_id(request)
    logger.bind(trace_id=trace_id).exception(f"Unhandled Exception: Path={request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response("Internal server error", "INTERNAL_SERVER_ERROR"),
        headers={"X-Trace-ID": trace_id},
    )


# --- Application Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup (connections, index checks, cache) and shutdown."""
    logger.info(f"Starting up {settings.APP_NAME}...")
    try:
        await connect_to_mongo()
        if settings.PROFILE_CACHE_BACKEND == "redis":
            await connect_redis()

        logger.info("Ensuring database indexes...")
        await MongoProfileStore(get_database()).ensure_indexes()
        await audit_service.ensure_indexes()
        logger.info("Database indexes checked/created.")

        cache = init_profile_cache()
        logger.info(f"Profile cache ready: {type(cache).__name__} (ttl={cache.ttl_seconds}s)")
        logger.info("Startup sequence complete.")
    except Exception as e:
        logger.critical(f"Application startup failed: {e}")
        await close_mongo_connection()
        await close_redis()
        raise RuntimeError(f"Startup error: {e}") from e

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    await close_mongo_connection()
    await close_redis()
    logger.info("Shutdown complete.")


# --- FastAPI App ---
app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    exception_handlers={
        StarletteHTTPException: http_exception_handler,
        RequestValidationError: validation_exception_handler,
        RateLimitExceeded: rate_limit_exceeded_handler,
        AppError: app_error_handler,
        RepositoryError: repository_error_handler,
        Exception: generic_unhandled_exception_handler,
    },
)

# --- Apply Middlewares ---
# Each middleware added wraps the ones added before it.
app.add_middleware(BaseHTTPMiddleware, dispatch=trace_id_middleware)

if settings.allowed_origins:
    logger.info(f"Configuring CORS for origins: {settings.allowed_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*", settings.AUTH_OWNER_HEADER, "X-Trace-ID"],
        expose_headers=["X-Trace-ID"],
    )

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# --- Include API Routers ---
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health", tags=["Health Check"])
async def health_check():
    return {"status": "healthy", "service": settings.APP_NAME}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.HOST, port=settings.PORT,
        reload=settings.RELOAD, log_level=settings.LOG_LEVEL.lower(),
    )
