# main.py — TaskFlow API
# - Request ids, timing and response hardening in one middleware
# - TaskFlowError and request-validation failures share one JSON error body
# - /health reports database reachability and the active access policy

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import access_policy
import storage
from database import async_session_maker, close_db, init_db
from exceptions import TaskFlowError, UpstreamFailure
from telemetry import setup_telemetry

VERSION = "1.0.0"
LLM_ENV_KEYS = ("OPENAI_API_KEY", "GROQ_API_KEY", "LOCAL_LLM_URL")
HARDENING_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )


configure_logging()
logger = logging.getLogger("taskflow")


def _check_startup_config() -> bool:
    """Log anything in the environment that will degrade the service."""
    problems = []

    if len(os.getenv("JWT_SECRET_KEY", "")) < 32:
        problems.append("JWT_SECRET_KEY is missing or shorter than 32 chars; tokens will not survive a restart")

    configured = [key for key in LLM_ENV_KEYS if os.getenv(key)]
    if configured:
        logger.info(f"Brain providers configured: {', '.join(configured)}")
    else:
        problems.append("No language-model API key configured; Brain will answer with stub replies")

    logger.info(
        f"Access policy '{access_policy.ACTIVE_POLICY.name}', "
        f"uploads in {os.path.abspath(storage.STORAGE_ROOT)}"
    )
    for problem in problems:
        logger.warning(problem)
    return not problems


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"TaskFlow v{VERSION} starting")
    await init_db()
    os.makedirs(storage.STORAGE_ROOT, exist_ok=True)
    _check_startup_config()
    setup_telemetry(app)
    yield
    logger.info("TaskFlow stopping")
    await close_db()


app = FastAPI(
    title="TaskFlow",
    description="Workspaces, kanban tasks, team analytics and the Brain assistant",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID", "X-Response-Time"],
)


# ============================================================
# MIDDLEWARE: request context
# ============================================================

@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Tag the request with ids, time it, and harden the response headers."""
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = rid
    request.state.correlation_id = request.headers.get("X-Correlation-ID", rid)

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers.update(HARDENING_HEADERS)
    response.headers["X-Request-ID"] = rid
    response.headers["X-Correlation-ID"] = request.state.correlation_id
    response.headers["X-Response-Time"] = f"{elapsed:.4f}s"

    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed * 1000:.1f}ms rid={rid[:8]}")
    return response


# ============================================================
# ERROR RESPONSES
# ============================================================

def _error_body(request: Request, detail: str, code: str, **extra) -> dict:
    return {"detail": detail, "code": code, **extra, "request_id": getattr(request.state, "request_id", None)}


def _field_errors(exc: RequestValidationError) -> list:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields.append({
            "field": ".".join(loc) or "body",
            "message": str(err.get("msg", "")),
            "type": str(err.get("type", "unknown")),
        })
    return fields


@app.exception_handler(TaskFlowError)
async def taskflow_error_handler(request: Request, exc: TaskFlowError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, f"{request.method} {request.url.path}: {exc.error_code} {exc.message}")
    body = exc.to_dict()
    body["request_id"] = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    failure = UpstreamFailure("Database operation failed")
    return JSONResponse(
        status_code=failure.status_code,
        content=_error_body(request, failure.message, failure.error_code),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=_error_body(request, "Invalid data", "VALIDATION_ERROR", errors=_field_errors(exc)),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=_error_body(request, "Internal server error", "INTERNAL_ERROR"),
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import auth, users, workspaces, tasks, files, analytics, brain  # noqa: E402

for module in (auth, users, workspaces, tasks, files, analytics, brain):
    app.include_router(module.router)


# ============================================================
# SERVICE ENDPOINTS
# ============================================================

async def _database_status() -> str:
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        return f"error: {str(e)[:100]}"
    return "connected"


@app.get("/health")
async def health():
    database = await _database_status()
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": database,
        "access_policy": access_policy.ACTIVE_POLICY.name,
    }


@app.get("/")
async def root():
    return {"name": "TaskFlow", "version": VERSION, "docs": "/docs", "health": "/health"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENVIRONMENT") == "development",
        workers=int(os.getenv("WORKERS", "1")),
    )
