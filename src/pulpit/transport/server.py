"""FastAPI application for the Pulpit gateway.

Routes:
    GET  /health, /ready         liveness and readiness probes
    GET  /metrics                Prometheus text metrics
    WS   /ws                     device socket (path configurable)
    POST /execute                run a shortcut or webhook (optionally delayed)
    DELETE /execute/{task_id}    cancel a delayed execution
    POST /notify                 send or schedule a notification
    DELETE /devices/{device_id}/session   close a removed device's socket

The lifespan starts the heartbeat and scheduler loops and, on shutdown,
stops them and closes every device socket with 1001.

Example:
    >>> from pulpit.transport.server import create_app
    >>> app = create_app()
    >>> # Run with: uvicorn pulpit.transport.server:app --port 26547
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import Field, ValidationError

from pulpit import __version__
from pulpit.clock import Clock
from pulpit.config import PulpitSettings, load_devices
from pulpit.devices.directory import DeviceDirectory, InMemoryDeviceDirectory
from pulpit.errors import (
    DeviceNotFoundError,
    DeviceUnreachableError,
    NoAutomationDeviceError,
    PulpitError,
    ScheduledTaskNotFoundError,
)
from pulpit.execution.correlator import ExecutionCorrelator
from pulpit.models.base import WireModel
from pulpit.models.constants import (
    APP_NAME,
    MAX_EXECUTION_TIMEOUT_SECONDS,
    MIN_EXECUTION_TIMEOUT_SECONDS,
    WS_CLOSE_GOING_AWAY,
    WS_CLOSE_REASON_SHUTDOWN,
)
from pulpit.models.entities import ExecutionRequest, NotificationPayload
from pulpit.models.enums import ExecutionStatus, ScheduledTaskType
from pulpit.observability.logging import get_logger, is_debug_mode
from pulpit.observability.metrics import MetricsCollector, get_metrics
from pulpit.push.apns import APNsDispatcher
from pulpit.push.dispatcher import PushDispatcher
from pulpit.push.fanout import NotificationFanout
from pulpit.routing.router import DeliveryRouter
from pulpit.scheduling import create_task_store
from pulpit.scheduling.runner import ScheduledTaskRunner
from pulpit.scheduling.store import ScheduledTaskStore
from pulpit.sessions.registry import SessionRegistry
from pulpit.transport.protocol import DeviceProtocol
from pulpit.transport.webhook import WebhookCaller
from pulpit.transport.websocket import WebSocketConnectionHandle, handle_device_websocket

logger = get_logger(__name__)


def clamp_timeout(value: float | None, default: float) -> float:
    """Clamp a caller-supplied execution timeout to the allowed range.

    Example:
        >>> clamp_timeout(None, 30.0)
        30.0
        >>> clamp_timeout(900, 30.0)
        300.0
        >>> clamp_timeout(0.1, 30.0)
        1.0
    """
    if value is None:
        value = default
    return min(max(float(value), MIN_EXECUTION_TIMEOUT_SECONDS), MAX_EXECUTION_TIMEOUT_SECONDS)


class ExecuteBody(WireModel):
    """POST /execute request body (camelCase keys)."""

    shortcut: str | None = None
    webhook_url: str | None = Field(default=None, alias="webhookUrl")
    device_id: str | None = Field(default=None, alias="deviceId")
    input: str | None = None
    delay: float | None = None
    timeout: float | None = None
    nowait: bool = False


@dataclass
class Gateway:
    """The wired-together core, stored on ``app.state.gateway``."""

    settings: PulpitSettings
    directory: DeviceDirectory
    registry: SessionRegistry
    correlator: ExecutionCorrelator
    protocol: DeviceProtocol
    router: DeliveryRouter
    fanout: NotificationFanout
    task_store: ScheduledTaskStore
    runner: ScheduledTaskRunner
    push: PushDispatcher | None = None
    active_connections: set[WebSocketConnectionHandle] = field(default_factory=set)
    background: set[asyncio.Task[Any]] = field(default_factory=set)

    def spawn(self, coro: Any, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self.background.add(task)
        task.add_done_callback(self.background.discard)
        return task


def build_gateway(
    settings: PulpitSettings,
    *,
    directory: DeviceDirectory | None = None,
    push: PushDispatcher | None = None,
    task_store: ScheduledTaskStore | None = None,
    clock: Clock | None = None,
    webhook_client: httpx.AsyncClient | None = None,
    metrics: MetricsCollector | None = None,
) -> Gateway:
    """Construct the core components with their collaborators injected."""
    metrics = metrics or get_metrics()
    if directory is None:
        devices = load_devices(settings.devices_file) if settings.devices_file else []
        directory = InMemoryDeviceDirectory(devices)
    if push is None and settings.apns is not None:
        try:
            push = APNsDispatcher.from_settings(settings.apns)
        except (OSError, ValueError) as e:
            logger.error(
                "pulpit.apns.init_failed", key_path=str(settings.apns.key_path), error=str(e)
            )
    if task_store is None:
        task_store = create_task_store(settings)

    registry = SessionRegistry(
        clock=clock.now if clock is not None else time.monotonic,
        directory=directory,
        metrics=metrics,
    )
    correlator = ExecutionCorrelator(clock=clock, metrics=metrics)
    protocol = DeviceProtocol(
        registry,
        correlator,
        directory,
        clock=clock,
        auth_timeout=settings.auth_timeout,
        heartbeat_interval=settings.heartbeat_interval,
        metrics=metrics,
    )
    router = DeliveryRouter(
        protocol,
        directory,
        push=push,
        webhook=WebhookCaller(client=webhook_client),
        default_timeout=settings.execution_timeout,
        metrics=metrics,
    )
    fanout = NotificationFanout(directory, protocol, push=push, task_store=task_store)
    runner = ScheduledTaskRunner(
        task_store,
        router,
        fanout,
        poll_interval=settings.scheduler_poll_interval,
        metrics=metrics,
    )
    return Gateway(
        settings=settings,
        directory=directory,
        registry=registry,
        correlator=correlator,
        protocol=protocol,
        router=router,
        fanout=fanout,
        task_store=task_store,
        runner=runner,
        push=push,
    )


_ERROR_STATUS: dict[type[PulpitError], int] = {
    DeviceUnreachableError: 503,
    NoAutomationDeviceError: 404,
    DeviceNotFoundError: 404,
    ScheduledTaskNotFoundError: 404,
}


def _error_response(exc: PulpitError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "code": exc.code, "details": exc.details},
    )


def create_app(
    settings: PulpitSettings | None = None,
    *,
    directory: DeviceDirectory | None = None,
    push: PushDispatcher | None = None,
    task_store: ScheduledTaskStore | None = None,
    clock: Clock | None = None,
    webhook_client: httpx.AsyncClient | None = None,
    metrics: MetricsCollector | None = None,
    run_background_loops: bool = True,
) -> FastAPI:
    """Create the gateway FastAPI application.

    Args:
        settings: Gateway settings (defaults to PulpitSettings.from_env())
        directory: Device directory; defaults to an in-memory one loaded from
            settings.devices_file
        push: Push dispatcher; defaults to APNs when settings.apns is set
        task_store: Scheduled task store; defaults to settings.storage_backend
        clock: Timer source for auth deadlines and execution timeouts
        webhook_client: httpx client used for webhook targets
        metrics: Metrics collector (defaults to the process-wide one)
        run_background_loops: Start the heartbeat and scheduler loops in the lifespan

    Returns:
        Configured FastAPI application; the core is on ``app.state.gateway``
    """
    settings = settings or PulpitSettings.from_env()
    gateway = build_gateway(
        settings,
        directory=directory,
        push=push,
        task_store=task_store,
        clock=clock,
        webhook_client=webhook_client,
        metrics=metrics,
    )
    metrics_collector = metrics or get_metrics()

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        loops: list[asyncio.Task[None]] = []
        if run_background_loops:
            loops.append(asyncio.create_task(gateway.protocol.run_heartbeat(), name="heartbeat"))
            loops.append(asyncio.create_task(gateway.runner.run(), name="scheduler"))
        logger.info(
            "pulpit.server.started",
            ws_path=settings.ws_path,
            push_enabled=gateway.push is not None,
            storage=settings.storage_backend,
        )
        try:
            yield
        finally:
            for task in [*loops, *gateway.background]:
                task.cancel()
            for task in [*loops, *gateway.background]:
                with suppress(asyncio.CancelledError):
                    await task
            gateway.registry.close_all(WS_CLOSE_GOING_AWAY, WS_CLOSE_REASON_SHUTDOWN)
            for handle in list(gateway.active_connections):
                handle.close(WS_CLOSE_GOING_AWAY, WS_CLOSE_REASON_SHUTDOWN)
            gateway.correlator.shutdown(WS_CLOSE_REASON_SHUTDOWN)
            aclose = getattr(gateway.push, "aclose", None)
            if aclose is not None:
                await aclose()
            logger.info("pulpit.server.stopped")

    _docs_url = "/docs" if is_debug_mode() else None
    app = FastAPI(
        title=f"{APP_NAME} Gateway",
        description="Device session and execution gateway",
        version=__version__,
        docs_url=_docs_url,
        redoc_url=None,
        openapi_url="/openapi.json" if is_debug_mode() else None,
        lifespan=_lifespan,
    )
    app.state.gateway = gateway

    @app.exception_handler(PulpitError)
    async def _pulpit_error_handler(request: Request, exc: PulpitError) -> JSONResponse:
        logger.info("pulpit.server.request_failed", path=request.url.path, code=exc.code)
        return _error_response(exc)

    @app.get("/health")
    async def health() -> JSONResponse:
        """Liveness probe: always OK if the process is running."""
        return JSONResponse(status_code=200, content={"status": "ok"})

    @app.get("/ready")
    async def ready() -> JSONResponse:
        """Readiness probe with a summary of live sessions and pending executions."""
        return JSONResponse(
            status_code=200,
            content={
                "status": "ok",
                "liveSessions": len(gateway.registry),
                "pendingExecutions": len(gateway.correlator),
                "pushEnabled": gateway.push is not None,
            },
        )

    @app.get("/metrics")
    async def metrics_endpoint() -> PlainTextResponse:
        """Return Prometheus-compatible metrics."""
        return PlainTextResponse(
            content=metrics_collector.export_prometheus(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    @app.websocket(settings.ws_path)
    async def device_socket(websocket: WebSocket) -> None:
        await handle_device_websocket(websocket, gateway.protocol, gateway.active_connections)

    @app.post("/execute")
    async def execute(request: Request) -> JSONResponse:
        try:
            body = ExecuteBody.model_validate(await request.json())
            execution = ExecutionRequest(
                shortcut_name=body.shortcut,
                webhook_url=body.webhook_url,
                target_device_id=body.device_id,
                input=body.input,
                timeout_seconds=clamp_timeout(body.timeout, settings.execution_timeout),
            )
        except (ValidationError, ValueError) as e:
            return JSONResponse(status_code=400, content={"error": _first_error(e)})

        if body.delay is not None and body.delay > 0:
            execute_at = datetime.now(timezone.utc) + timedelta(seconds=body.delay)
            task = await gateway.task_store.create(
                ScheduledTaskType.ACTION,
                execution.model_dump(
                    mode="json",
                    include={"shortcut_name", "target_device_id", "webhook_url", "input"},
                ),
                execute_at,
            )
            logger.info("pulpit.server.execution_scheduled", task_id=task.id, delay=body.delay)
            return JSONResponse(
                status_code=202,
                content={
                    "id": task.id,
                    "status": "scheduled",
                    "executeAt": task.execute_at.isoformat(),
                },
            )

        if body.nowait:
            gateway.spawn(_execute_detached(gateway.router, execution), name="execute-nowait")
            return JSONResponse(status_code=202, content={"status": "accepted"})

        outcome = await gateway.router.execute(execution)
        status_code = 504 if outcome.status is ExecutionStatus.TIMED_OUT else 200
        return JSONResponse(status_code=status_code, content=outcome.to_response())

    @app.delete("/execute/{task_id}")
    async def cancel_execution(task_id: str) -> JSONResponse:
        if not await gateway.task_store.cancel(task_id):
            raise ScheduledTaskNotFoundError(task_id)
        logger.info("pulpit.server.execution_cancelled", task_id=task_id)
        return JSONResponse(status_code=200, content={"status": "cancelled"})

    @app.post("/notify")
    async def notify(request: Request) -> JSONResponse:
        try:
            payload = NotificationPayload.model_validate(await request.json())
        except (ValidationError, ValueError) as e:
            return JSONResponse(status_code=400, content={"error": _first_error(e)})
        result = await gateway.fanout.deliver(payload)
        status_code = 202 if result.status == "scheduled" else 200
        return JSONResponse(status_code=status_code, content=result.to_dict())

    @app.delete("/devices/{device_id}/session")
    async def evict_device_session(device_id: str) -> JSONResponse:
        """Hook for the device store: close the socket of a device being deleted."""
        evicted = gateway.protocol.evict_device(device_id)
        return JSONResponse(status_code=200, content={"evicted": evicted})

    return app


async def _execute_detached(router: DeliveryRouter, request: ExecutionRequest) -> None:
    try:
        outcome = await router.execute(request)
    except PulpitError as e:
        logger.warning("pulpit.server.nowait_failed", code=e.code, error=e.message)
        return
    logger.info(
        "pulpit.server.nowait_finished",
        status=outcome.status.value,
        channel=outcome.channel.value,
    )


def _first_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        errors = exc.errors()
        if errors:
            return str(errors[0].get("msg", "Invalid request"))
    return str(exc) or "Invalid request"


def _create_default_app() -> FastAPI:
    """App for ``uvicorn pulpit.transport.server:app``, configured from PULPIT_* env."""
    return create_app(PulpitSettings.from_env())


app = _create_default_app()

__all__ = ["ExecuteBody", "Gateway", "app", "build_gateway", "clamp_timeout", "create_app"]
