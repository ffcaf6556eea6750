"""
FastAPI server for the pipeline API. Run with run_api_server(app) in a background thread.
Central endpoint: GET /api/tasks. Per-plugin routes are mounted from
schoolstats.plugins.<package>.api (get_router(pipeline_app)) under /api/<package>/.
Docs when enabled: http://<host>:<port>/docs
"""
import importlib
import logging
import pkgutil
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from schoolstats.api.schemas import Envelope, fail, ok
from schoolstats.core.models import get_all_task_schedules

logger = logging.getLogger(__name__)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO string (UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


class ActiveTimerResponse(BaseModel):
    name: str = ""
    next_run_at: Optional[str] = None


class TasksResponse(BaseModel):
    db_schedules: List[Dict[str, Any]]
    active_timers: List[ActiveTimerResponse]


def create_app(pipeline_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given PipelineApp instance."""
    app = FastAPI(title="School Statistics API", description="Statistics, at-risk students, snapshots and scheduler control")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail)))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=fail(f"Invalid request: {exc.errors()}"))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content=fail("Internal server error"))

    @app.get("/api/tasks", response_model=Envelope[TasksResponse])
    def list_tasks() -> Dict[str, Any]:
        """List scheduled tasks: DB schedules and active in-memory timers."""
        db_schedules = get_all_task_schedules()
        for row in db_schedules:
            row["next_run_at"] = _serialize_datetime(row.get("next_run_at"))
            row["last_run_at"] = _serialize_datetime(row.get("last_run_at"))

        active_list = [
            {"name": t["name"], "next_run_at": _serialize_datetime(t["next_run_at"])}
            for t in pipeline_app.task_manager.get_active_timers()
        ]
        return ok({"db_schedules": db_schedules, "active_timers": active_list})

    # Mount per-plugin API routers from schoolstats.plugins.<name>.api (get_router(pipeline_app))
    plugins_pkg = importlib.import_module("schoolstats.plugins")
    for _mod, name, is_pkg in pkgutil.iter_modules(plugins_pkg.__path__):
        if not is_pkg:
            continue
        try:
            api_module = importlib.import_module(f"schoolstats.plugins.{name}.api")
        except ImportError as e:
            logger.debug(f"No API module for plugin {name}: {e}")
            continue
        if not callable(getattr(api_module, "get_router", None)):
            continue
        try:
            router = api_module.get_router(pipeline_app)
            if router is not None:
                app.include_router(router, prefix=f"/api/{name}")
        except Exception as e:
            logger.warning(f"Failed to mount API router for plugin {name}: {e}", exc_info=True)

    return app


def run_api_server(pipeline_app: Any) -> None:
    """
    Start the API server in a daemon thread if api.enabled is true.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config.
    """
    api_config = pipeline_app.config.data.get("api") or {}
    if not api_config.get("enabled", False):
        logger.info("API server not started: set api.enabled to true in your config file to enable.")
        return
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(pipeline_app)

    def run_uvicorn():
        try:
            import uvicorn
            logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
            uvicorn.run(fastapi_app, host=host, port=port, log_config=None)
        except Exception as e:
            logger.exception(f"API server thread failed: {e}")

    thread = threading.Thread(target=run_uvicorn, daemon=True)
    thread.start()
    logger.info("API server thread started.")
