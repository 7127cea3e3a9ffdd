from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .metrics import counter_inc, gauge_dec, gauge_inc, render_prometheus, summary_observe
from .routers import charts as charts_router
from .routers import data as data_router
from .routers import tables as tables_router
from .schemas import ApiError, ApiErrorType, HealthResponse
from .service import error_response, get_gateway

logging.basicConfig(
    level=(settings.log_level or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request duration (ms) and in-flight gauge for API endpoints
@app.middleware("http")
async def _metrics_mw(request: Request, call_next):
    path = request.url.path or ""
    method = request.method or "GET"
    is_api = path.startswith("/api/")
    if is_api:
        gauge_inc("querygate_active_requests", 1.0, {"path": path, "method": method})
    start = time.perf_counter()
    status = "500"
    try:
        resp: Response = await call_next(request)
        status = str(resp.status_code)
        return resp
    finally:
        elapsed = int((time.perf_counter() - start) * 1000)
        if is_api:
            gauge_dec("querygate_active_requests", 1.0, {"path": path, "method": method})
            summary_observe("querygate_request_duration_ms", elapsed, {"path": path, "method": method})
            counter_inc("querygate_requests_total", {"method": method, "status": status})


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"[api] unhandled error on {request.method} {request.url.path}")
    error = ApiError(type=ApiErrorType.QUERY_ERROR, message=str(exc) or exc.__class__.__name__)
    return error_response(error, api=request.url.path).json_response()


app.include_router(charts_router.router, prefix="/api")
app.include_router(tables_router.router, prefix="/api")
app.include_router(data_router.router, prefix="/api")


@app.get("/api/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    return HealthResponse(status="ok", app=settings.app_name, env=settings.environment, hosts=len(settings.clickhouse_hosts_list))


@app.get("/api/metrics")
async def metrics() -> Response:
    body = render_prometheus()
    return Response(content=body, media_type="text/plain; version=0.0.4; charset=utf-8")


@app.get("/")
async def root():
    return {"ok": True, "app": settings.app_name}


@app.on_event("startup")
async def _startup():
    logger.info(f"[startup] {settings.app_name} ({settings.environment}) serving {len(settings.clickhouse_hosts_list)} host(s)")


@app.on_event("shutdown")
async def _shutdown():
    # Only close clients that were actually created
    if get_gateway.cache_info().currsize:
        for executor in get_gateway().executors:
            close = getattr(executor, "close", None)
            if close is not None:
                close()
