import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Registers models with SQLAlchemy Base before create_all
from . import models  # noqa: F401
from .database import Base, engine
from .errors import SquareAPIError, square_error_response
from .redis_client import get_redis_client
from .routes import (
    admin_auth_router,
    availability_router,
    bookings_router,
    catalog_router,
    cron_router,
    customers_router,
    payments_router,
    square_router,
)
from .security_headers import SecurityHeadersMiddleware
from .services.booking_service import BookingRequestError
from .services.no_show_service import NoShowChargeError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    if get_redis_client() is None:
        logger.info("Redis not in use - sessions, cache and rate limits live in process memory")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Detailing Booking API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and query parameters are client errors (400)"""
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(SquareAPIError)
async def square_exception_handler(request: Request, exc: SquareAPIError):
    logger.error(f"Square API error on {request.method} {request.url.path}: {exc.status_code} {exc.detail}")
    return square_error_response(exc, "Square API request failed")


@app.exception_handler(BookingRequestError)
async def booking_exception_handler(request: Request, exc: BookingRequestError):
    content = {"error": exc.message}
    if exc.code:
        content["code"] = exc.code
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(NoShowChargeError)
async def no_show_exception_handler(request: Request, exc: NoShowChargeError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"{request.method} {request.url.path} - Error: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


if SECURITY_HEADERS_ENABLED:
    app.add_middleware(SecurityHeadersMiddleware, exclude_paths=["/health", "/docs", "/openapi.json"])
    logger.info("Security headers enabled")
else:
    logger.warning("Security headers DISABLED - only use in development!")


# CORS Configuration
# The admin session cookie needs credentials, so origins must be explicit
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(admin_auth_router)
app.include_router(availability_router)
app.include_router(bookings_router)
app.include_router(catalog_router)
app.include_router(cron_router)
app.include_router(customers_router)
app.include_router(payments_router)
app.include_router(square_router)


@app.get("/")
def root():
    return {"message": "Detailing Booking API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
