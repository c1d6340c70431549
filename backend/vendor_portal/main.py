from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.cors import CORSMiddleware

from .config import settings
from .gate import AdmissionConfig, SubmissionGate
from .logging_utils import configure_logging
from .maintenance import MaintenanceLoop
from .metrics import CONTENT_TYPE_LATEST, REQUESTS_TOTAL, generate_latest
from .rate_limit import SlidingWindowLimiter
from .routers.vendors import client_ip_from_request
from .routers.vendors import router as vendors_router

load_dotenv()
configure_logging()
logger = logging.getLogger("vendor_portal.app")

app = FastAPI(title="Vendor Registration API", version="1.0.0")
api_router = APIRouter(prefix="/api")

app.state.gate = SubmissionGate(AdmissionConfig.from_settings(settings))
app.state.http_rate_limiter = SlidingWindowLimiter()
maintenance = MaintenanceLoop(
    app.state.gate,
    interval_seconds=settings.maintenance_interval_seconds,
    request_limiter=app.state.http_rate_limiter,
    request_window_seconds=settings.rate_limit_window_seconds,
)


@app.on_event("startup")
async def startup_event() -> None:
    maintenance.start()
    logger.info(
        "Backend startup complete",
        extra={"event": "startup"},
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await maintenance.stop()


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_guard_middleware(request: Request, call_next):
    path = request.url.path
    method = request.method
    ip = client_ip_from_request(request)

    limiter: SlidingWindowLimiter = request.app.state.http_rate_limiter
    if not limiter.allow(
        f"http:{ip}",
        settings.rate_limit_requests_per_window,
        settings.rate_limit_window_seconds,
    ):
        logger.warning("Global rate limit exceeded", extra={"event": "http_rate_limited", "ip": ip, "path": path})
        response = JSONResponse(
            status_code=429,
            content={
                "success": False,
                "message": "Too many requests from this IP, please try again later.",
                "error": "RATE_LIMIT_EXCEEDED",
            },
        )
        REQUESTS_TOTAL.labels(method=method, path=path, status="429").inc()
        return response

    response = await call_next(request)
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(response.status_code)).inc()
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error while processing request",
        extra={"event": "unhandled_error", "path": request.url.path},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "An unexpected error occurred while processing your submission",
            "error": "INTERNAL_SERVER_ERROR",
        },
    )


@api_router.get("/health")
async def api_healthcheck() -> dict[str, str]:
    return {"status": "ok", "message": "API is running", "ts": datetime.now(timezone.utc).isoformat()}


@app.get("/health")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


@api_router.get("/debug/admission")
async def admission_stats(request: Request) -> dict[str, Any]:
    if not settings.debug_stats_enabled:
        raise HTTPException(status_code=404, detail="Not found")
    gate: SubmissionGate = request.app.state.gate
    return gate.stats().as_dict()


@app.get("/metrics")
async def metrics() -> Response:
    if not settings.enable_prometheus_metrics:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


api_router.include_router(vendors_router)
app.include_router(api_router)


def run() -> None:
    import uvicorn

    uvicorn.run("vendor_portal.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
