# expert_rag/main.py
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from expert_rag.api.dependencies import build_services
from expert_rag.api.routes import router
from expert_rag.config import LOG_DIR, LOG_LEVEL
from expert_rag.observability.logger import get_logger, setup_logging
from expert_rag.observability.metrics import metrics_tracker
from expert_rag.observability.posthog_client import posthog_client

# Initialize logging FIRST
setup_logging(log_level=LOG_LEVEL, log_dir=LOG_DIR)
logger = get_logger(__name__)

app = FastAPI(
    title="Expert Chat API",
    description="Multi-provider expert chat with document retrieval-augmentation",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every HTTP request with latency, record metrics and register the
    request id in PostHog.
    """

    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    posthog_client.identify_user(
        distinct_id=request_id,
        properties={
            "entry_point": request.url.path,
            "method": request.method,
        },
    )

    logger.info(
        "request_started",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None
        }
    )

    start_time = time.time()

    try:

        response = await call_next(request)

        latency = time.time() - start_time

        if response.status_code < 500:
            metrics_tracker.record_success(latency)
        else:
            metrics_tracker.record_failure()

        logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_seconds": round(latency, 3)
            }
        )

        response.headers["X-Request-ID"] = request_id

        return response

    except Exception as e:

        latency = time.time() - start_time

        metrics_tracker.record_failure()

        posthog_client.track_error(
            distinct_id=request_id,
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint=request.url.path,
        )

        logger.error(
            "request_failed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "latency_seconds": round(latency, 3),
                "error": str(e),
                "error_type": type(e).__name__
            },
            exc_info=True
        )

        raise


app.include_router(router)


@app.on_event("startup")
async def startup_event():

    app.state.services = await build_services()

    logger.info("application_startup", extra={"version": "1.0.0"})


@app.on_event("shutdown")
async def shutdown_event():

    services = getattr(app.state, "services", None)

    if services is not None and services.engine is not None:
        await services.engine.dispose()

    logger.info("application_shutdown")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):

    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "unhandled_exception",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "error": str(exc),
            "error_type": type(exc).__name__
        },
        exc_info=True
    )

    posthog_client.track_error(
        distinct_id=request_id,
        error_type=type(exc).__name__,
        error_message=str(exc),
        endpoint=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "An internal error occurred. Please try again.",
            "request_id": request_id,
            "error_type": type(exc).__name__
        }
    )


@app.get("/")
async def root():

    return {
        "message": "Expert Chat API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics"
    }
