"""Notifications module - FastAPI service with background worker."""

from __future__ import annotations

import asyncio
from dataclasses import asdict

import redis.asyncio as aioredis
import structlog
from fastapi import Depends, FastAPI, HTTPException

from modules.notifications.manifest import MANIFEST
from modules.notifications.tools import NotificationTools
from modules.notifications.worker import NotificationService, build_service, notification_loop
from shared.auth import require_service_auth
from shared.config import get_settings
from shared.database import dispose_engine, get_session_factory
from shared.schemas.common import HealthResponse
from shared.schemas.tools import ModuleManifest, ToolCall, ToolResult

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Notifications Module", version="1.0.0")

tools: NotificationTools | None = None
service: NotificationService | None = None
_redis: aioredis.Redis | None = None
_worker_task: asyncio.Task | None = None


@app.on_event("startup")
async def startup():
    global tools, service, _redis, _worker_task
    settings = get_settings()
    session_factory = get_session_factory()
    _redis = aioredis.from_url(settings.redis_url)
    service = build_service(session_factory, settings, _redis)
    tools = NotificationTools(service, settings)

    # Start the background sweep loop
    _worker_task = asyncio.create_task(
        notification_loop(session_factory, settings, settings.redis_url, service=service)
    )
    logger.info("notifications_module_ready", timezone=settings.notification_timezone)


@app.on_event("shutdown")
async def shutdown():
    global _worker_task, _redis
    if _worker_task and not _worker_task.done():
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass
    if service is not None:
        await service.audit_log.flush()
    if _redis is not None:
        await _redis.aclose()
        _redis = None
    await dispose_engine()
    logger.info("notifications_module_shutdown")


@app.get("/manifest", response_model=ModuleManifest)
async def manifest(_=Depends(require_service_auth)):
    """Return the module manifest."""
    return MANIFEST


@app.post("/execute", response_model=ToolResult)
async def execute(call: ToolCall, _=Depends(require_service_auth)):
    """Execute a tool call."""
    if tools is None:
        return ToolResult(tool_name=call.tool_name, success=False, error="Module not ready")

    try:
        tool_name = call.tool_name.split(".")[-1]
        args = dict(call.arguments)

        if tool_name == "create_schedule":
            result = await tools.create_schedule(**args)
        elif tool_name == "create_recurring_schedule":
            result = await tools.create_recurring_schedule(**args)
        elif tool_name == "create_custom_schedule":
            result = await tools.create_custom_schedule(**args)
        elif tool_name == "list_schedules":
            result = await tools.list_schedules(**args)
        elif tool_name == "get_schedule":
            result = await tools.get_schedule(**args)
        elif tool_name == "update_schedule":
            result = await tools.update_schedule(**args)
        elif tool_name == "set_schedule_active":
            result = await tools.set_schedule_active(**args)
        elif tool_name == "delete_schedule":
            result = await tools.delete_schedule(**args)
        elif tool_name == "get_preferences":
            result = await tools.get_preferences(**args)
        elif tool_name == "update_preferences":
            result = await tools.update_preferences(**args)
        elif tool_name == "list_templates":
            result = await tools.list_templates(**args)
        elif tool_name == "create_template":
            result = await tools.create_template(**args)
        elif tool_name == "update_template":
            result = await tools.update_template(**args)
        elif tool_name == "delete_template":
            result = await tools.delete_template(**args)
        elif tool_name == "preview_template":
            result = await tools.preview_template(**args)
        elif tool_name == "send_notification":
            result = await tools.send_notification(**args)
        elif tool_name == "get_stats":
            result = await tools.get_stats(**args)
        elif tool_name == "run_sweep":
            result = await tools.run_sweep()
        else:
            return ToolResult(
                tool_name=call.tool_name,
                success=False,
                error=f"Unknown tool: {call.tool_name}",
            )

        logger.info("tool_executed", tool=call.tool_name, caller=call.user_id)
        return ToolResult(tool_name=call.tool_name, success=True, result=result)
    except Exception as e:
        logger.error("tool_execution_error", tool=call.tool_name, error=str(e), exc_info=True)
        return ToolResult(tool_name=call.tool_name, success=False, error=str(e))


@app.post("/tick")
async def tick(_=Depends(require_service_auth)):
    """Run due schedules now (external cron hook)."""
    if service is None:
        raise HTTPException(status_code=503, detail="Module not ready")
    summary = await service.runner.tick()
    await service.audit_log.flush()
    return asdict(summary)


@app.post("/retries/drain")
async def drain_retries(_=Depends(require_service_auth)):
    """Re-offer due retry records to the dispatcher."""
    if service is None:
        raise HTTPException(status_code=503, detail="Module not ready")
    delivered = await service.retry_queue.drain_due(service.dispatcher)
    await service.audit_log.flush()
    return {"delivered": delivered}


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        worker_running=_worker_task is not None and not _worker_task.done(),
    )
