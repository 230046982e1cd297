from contextlib import asynccontextmanager
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

from onemeal.api.routes import router as api_router
from onemeal.core.config import settings
from onemeal.core.errors import StoreUnavailable
from onemeal.core.middleware import SecurityHeadersMiddleware
from onemeal.logging import configure_logging
from onemeal.middleware.logging import LoggingMiddleware
from onemeal.models.dto import ErrorResponse, FieldError
from onemeal.services.redis_client import open_redis, ping

configure_logging()
logger = structlog.get_logger(__name__)


# --- Application Lifecycle Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_startup", version=settings.VERSION, env=settings.ENV)
    async with open_redis() as redis_client:
        app.state.redis = redis_client
        yield
        logger.info("application_shutdown")


# --- FastAPI Application Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.BRIEF_DESCRIPTION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(LoggingMiddleware)

# --- API Routes ---
app.include_router(api_router, prefix="/api")


# --- Health Check Endpoint ---
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    try:
        await ping(request.app.state.redis)
    except StoreUnavailable:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "degraded"})
    return {"status": "ok"}


# --- Validation errors are client errors (400), without echoing the input ---
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = [
        FieldError(loc=[str(part) for part in err.get("loc", ())], msg=err.get("msg", ""), type=err.get("type", ""))
        for err in exc.errors()
    ]
    logger.info("request_validation_failed", fields=[".".join(f.loc) for f in fields])
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": ErrorResponse(
                error="INVALID_DATA",
                detail="The request did not pass validation.",
                fields=fields,
            ).model_dump(exclude_none=True)
        },
    )


# --- Global Exception Handler (for unhandled errors) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    logger.error("unhandled_exception", error_id=error_id, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": ErrorResponse(
                error="INTERNAL_SERVER_ERROR",
                detail="An unexpected error occurred. Please report this error ID.",
                error_id=error_id,
            ).model_dump(exclude_none=True)
        },
    )
