"""FastAPI control application."""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import aiofiles
import orjson
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from goofish_monitor.config import METRICS_FILE, Config, config
from goofish_monitor.errors import SessionConfigError, SessionStateError
from goofish_monitor.jobs.models import UserSettings
from goofish_monitor.parse.redact import redact_json
from goofish_monitor.runtime import MonitorRuntime

logger = logging.getLogger(__name__)

app = FastAPI(title="Goofish Monitor API", version="0.1.0")

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)


def verify_api_key(api_key: Optional[str] = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    expected_key = config.API_KEY
    if expected_key:
        if not api_key or api_key != expected_key:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


# Initialize components
runtime = MonitorRuntime()


def get_runtime() -> MonitorRuntime:
    return runtime


@app.on_event("startup")
async def startup():
    """Open storage and start the background timers."""
    await runtime.start()


@app.on_event("shutdown")
async def shutdown():
    await runtime.close()


class StartRequest(BaseModel):
    """Body of a start command. Both fields fall back to the existing session."""
    queries: Optional[list[str]] = None
    settings: Optional[UserSettings] = None


class QueriesRequest(BaseModel):
    queries: list[str] = Field(default_factory=list)


class RefreshRequest(BaseModel):
    force_interactive: bool = False


class CommandResponse(BaseModel):
    user_id: int
    ok: bool
    status: Optional[str] = None
    message: str = ""


def _command_response(rt: MonitorRuntime, user_id: int, ok: bool, message: str) -> CommandResponse:
    status = rt.supervisor.get_user_status(user_id)
    return CommandResponse(
        user_id=user_id,
        ok=ok,
        status=status["status"] if status else None,
        message=message,
    )


def _require_session(rt: MonitorRuntime, user_id: int) -> None:
    if rt.supervisor.get_user_status(user_id) is None:
        raise HTTPException(status_code=404, detail=f"No session for user {user_id}")


@app.get("/health")
async def health(rt: MonitorRuntime = Depends(get_runtime)):
    """Health check endpoint (no auth required)."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active_users": len(rt.supervisor.active_users()),
        "notifications_available": rt.sink.is_available(),
    }


@app.get("/status")
async def status(
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    """Global statistics and every session's status."""
    return redact_json({
        "statistics": rt.supervisor.global_statistics(),
        "sessions": rt.supervisor.get_all_statuses(),
    })


@app.get("/sessions/{user_id}")
async def get_session(
    user_id: int,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    status = rt.supervisor.get_user_status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No session for user {user_id}")
    return redact_json(status)


@app.delete("/sessions/{user_id}")
async def delete_session(
    user_id: int,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    """Stop the session and drop its saved queries, settings and delivered history."""
    if not await rt.supervisor.delete_user(user_id):
        raise HTTPException(status_code=404, detail=f"No data for user {user_id}")
    return {"user_id": user_id, "deleted": True}


@app.post("/sessions/{user_id}/start", response_model=CommandResponse)
async def start_session(
    user_id: int,
    request: Optional[StartRequest] = None,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    request = request or StartRequest()
    try:
        ok = await rt.supervisor.start(user_id, request.queries, request.settings)
    except SessionConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _command_response(rt, user_id, ok, "started" if ok else "already running")


@app.post("/sessions/{user_id}/stop", response_model=CommandResponse)
async def stop_session(
    user_id: int,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    _require_session(rt, user_id)
    ok = await rt.supervisor.stop(user_id)
    return _command_response(rt, user_id, ok, "stopped" if ok else "not running")


@app.post("/sessions/{user_id}/pause", response_model=CommandResponse)
async def pause_session(
    user_id: int,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    _require_session(rt, user_id)
    try:
        ok = await rt.supervisor.pause(user_id)
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _command_response(rt, user_id, ok, "paused" if ok else "not running")


@app.post("/sessions/{user_id}/resume", response_model=CommandResponse)
async def resume_session(
    user_id: int,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    _require_session(rt, user_id)
    try:
        ok = await rt.supervisor.resume(user_id)
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _command_response(rt, user_id, ok, "resumed" if ok else "not running")


@app.post("/sessions/{user_id}/reset", response_model=CommandResponse)
async def reset_session(
    user_id: int,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    _require_session(rt, user_id)
    ok = rt.supervisor.reset(user_id)
    return _command_response(rt, user_id, ok, "statistics reset")


@app.put("/sessions/{user_id}/queries", response_model=CommandResponse)
async def update_queries(
    user_id: int,
    request: QueriesRequest,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    _require_session(rt, user_id)
    if not await rt.supervisor.update_queries(user_id, request.queries):
        raise HTTPException(status_code=400, detail="Query list must not be empty")
    return _command_response(rt, user_id, True, f"{len(request.queries)} queries set")


@app.delete("/sessions/{user_id}/seen")
async def forget_seen(
    user_id: int,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    """Forget which listings were delivered, so they are notified again."""
    _require_session(rt, user_id)
    removed = await rt.supervisor.forget_seen(user_id)
    return {"user_id": user_id, "forgotten": removed}


@app.post("/credentials/{domain}/refresh")
async def refresh_credentials(
    domain: str,
    request: Optional[RefreshRequest] = None,
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    """Operator-triggered credential refresh, bypassing the TTL."""
    request = request or RefreshRequest()
    ok = await rt.supervisor.refresh_credentials(domain, force_interactive=request.force_interactive)
    return {"domain": domain, "refreshed": ok}


@app.get("/credentials")
async def credentials(
    rt: MonitorRuntime = Depends(get_runtime),
    _: bool = Depends(verify_api_key),
):
    """Cache statistics with masked cookie values."""
    return rt.cache.stats()


@app.get("/metrics")
async def get_metrics(_: bool = Depends(verify_api_key)):
    """Last 100 health snapshots (requires API key if configured)."""
    if not METRICS_FILE.exists():
        return {"error": "No metrics available"}

    lines: list[dict[str, Any]] = []
    async with aiofiles.open(METRICS_FILE, "rb") as f:
        async for line in f:
            if line.strip():
                lines.append(orjson.loads(line))

    return {"metrics": redact_json(lines[-100:])}


if __name__ == "__main__":
    import uvicorn
    Config.validate()
    uvicorn.run(app, host="0.0.0.0", port=8000)
