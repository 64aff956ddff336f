"""Main FastAPI application"""
import os
import logging
import logging.config
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from routes import router as expenses_router
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rate_limit import limiter
from services.errors import ExpenseError, ExpenseValidationError
from services.expense_store import ExpenseStore

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            "markup": False,
        },
    },
    "loggers": {
        "uvicorn": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": {  # Root logger for our application
            "handlers": ["default"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

MONGODB_URI = os.getenv("MONGODB_URI")
DB_NAME = os.getenv("DB_NAME", "expense_tracker")
EXPENSES_COLLECTION = os.getenv("EXPENSES_COLLECTION", "expenses")
FRONTEND_URL = os.getenv("FRONTEND_URL")
MAX_BODY_SIZE = int(os.getenv("MAX_BODY_SIZE", str(16 * 1024)))  # 16KB is plenty for one expense
EXPENSES_PATH = "/expenses"

if not MONGODB_URI:
    logger.error("MONGODB_URI environment variable not set! Database connection will fail.")


# --- Middleware for Request Body Size Limit ---
class LimitBodySizeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.method == "POST" and request.url.path == EXPENSES_PATH:
            content_length_header = request.headers.get("content-length")
            if content_length_header:
                try:
                    content_length = int(content_length_header)
                    if content_length > MAX_BODY_SIZE:
                        logger.warning(f"Request rejected: body size {content_length} exceeds limit {MAX_BODY_SIZE}.")
                        return Response(f"Maximum request body size ({MAX_BODY_SIZE} bytes) exceeded.", status_code=413)
                except ValueError:
                    logger.warning("Request rejected: Invalid Content-Length header.")
                    return Response("Invalid Content-Length header.", status_code=400)

        response = await call_next(request)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Connect to MongoDB and make sure the unique index exists
    logger.info(f"Connecting to MongoDB database '{DB_NAME}'...")
    client = None
    try:
        client = AsyncIOMotorClient(MONGODB_URI, tz_aware=True)
        await client.admin.command("ping")
        logger.info("MongoDB ping successful.")
        store = ExpenseStore(client[DB_NAME].get_collection(EXPENSES_COLLECTION))
        await store.ensure_indexes()
        app.state.expense_store = store
        logger.info(f"Successfully connected to MongoDB database: {DB_NAME}")
    except Exception as e:
        # Requests fail with 500 until the database is reachable on the next start
        logger.error(f"Failed to connect to MongoDB: {e}")
        app.state.expense_store = None

    yield

    # Shutdown: Close MongoDB connection
    if client is not None:
        logger.info("Closing MongoDB connection...")
        client.close()
        logger.info("MongoDB connection closed.")


app = FastAPI(
    title="Expense Tracker API",
    description="Records expenses exactly once per Idempotency-Key and lists them by category and date.",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.state.expense_store = None
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors, reported as 400 like other validation failures."""
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    logger.warning(f"Malformed request to {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Malformed request", "fields": fields})


@app.exception_handler(ExpenseError)
async def expense_error_handler(request: Request, exc: ExpenseError):
    if isinstance(exc, ExpenseValidationError):
        return JSONResponse(status_code=400, content={"error": exc.message, "fields": exc.fields})
    logger.error(f"Store error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Server error"})


# --- Add Middleware (Order Matters) ---
allowed_origins = ["http://localhost:5173"]
if FRONTEND_URL:
    allowed_origins.append(FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Idempotency-Key"],
)
app.add_middleware(LimitBodySizeMiddleware)

app.include_router(expenses_router, tags=["expenses"])


@app.get("/health", summary="Health Check")
async def health():
    return {"status": "ok"}


@app.get("/", summary="API Info")
async def root():
    return {
        "message": "Expense Tracker API",
        "version": app.version,
        "endpoints": {
            "health": "GET  /health",
            "expenses": "GET  /expenses",
            "create": "POST /expenses",
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
