"""
DocAI - asynchronous document analysis service

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Import observability modules
from docai.config import settings
from docai.errors import PipelineError
from docai.logging_config import configure_logging, get_logger
from docai.sentry_config import configure_sentry
from docai.middleware.logging import LoggingMiddleware
from docai.routes.metrics import router as metrics_router

# Import route modules
from docai.routes.jobs import router as jobs_router
from docai.routes.internal import router as internal_router
from docai.routes.credits import router as credits_router

from docai import tasks
from docai.dependencies.services import close_services

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

log = get_logger(component="app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("app_started", environment=settings.ENVIRONMENT, dispatch_mode=settings.DISPATCH_MODE)
    yield
    log.info("app_stopping", pending_tasks=tasks.pending())
    # Let in-flight dispatches and worker runs finish before exiting
    await tasks.drain(timeout=30)
    await close_services()
    log.info("app_stopped")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Upload documents and receive an asynchronous AI analysis",
    lifespan=lifespan,
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# Error responses: always JSON, always {"error", "message"}
# ============================================

@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "VALIDATION_ERROR", "message": "Invalid request", "details": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": code, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

app.include_router(jobs_router)
app.include_router(credits_router)
app.include_router(internal_router)


@app.get("/")
async def root():
    """Liveness endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Configuration health check. Never reports secret values."""
    return {
        "status": "healthy",
        "providers": {
            "gemini": bool(settings.GEMINI_API_KEY),
            "openai": bool(settings.OPENAI_API_KEY),
        },
        "storage": settings.STORAGE_BACKEND,
        "dispatch": settings.DISPATCH_MODE,
        "rateLimit": settings.RATE_LIMIT_BACKEND,
    }
