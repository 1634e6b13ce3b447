"""IPC server for frontend communication.

A JSON-RPC-like protocol over stdin/stdout:
- Each message is a single line of JSON terminated by newline
- Request format: {"id": "...", "method": "...", "params": {...}}
- Response format: {"id": "...", "success": true/false, "result": ..., "error": ...}
- Change notifications are pushed as {"event": "...", "data": {...}}

Logging goes to stderr so it never interleaves with protocol output.
"""

import json
import logging
import sys
import threading
import time
from collections.abc import Callable
from typing import IO, Any

from pydantic import BaseModel

from screencap import __version__
from screencap.core.notifications import ALL_EVENTS
from screencap.core.services import ServiceManager
from screencap.ipc.models import BackendStatus, IPCNotification, IPCRequest, IPCResponse

logger = logging.getLogger(__name__)


_start_time: float = 0.0
_running: bool = False
_service_manager: ServiceManager | None = None

_output: IO[str] = sys.stdout
_output_lock = threading.Lock()

_handlers: dict[str, Callable[[dict[str, Any]], Any]] = {}


def handler(method: str) -> Callable:
    """Decorator to register an IPC method handler."""

    def decorator(func: Callable[[dict[str, Any]], Any]) -> Callable:
        _handlers[method] = func
        return func

    return decorator


def get_service_manager() -> ServiceManager:
    """The running service manager; handlers fail cleanly without one."""
    if _service_manager is None:
        raise RuntimeError("Service manager not initialized")
    return _service_manager


def set_service_manager(manager: ServiceManager | None) -> None:
    global _service_manager
    _service_manager = manager


def _register_handlers() -> None:
    """Import handler modules so their @handler decorators run."""
    from screencap.ipc import handlers  # noqa: F401


@handler("ping")
def handle_ping(params: dict[str, Any]) -> str:
    return "pong"


@handler("get_status")
def handle_get_status(params: dict[str, Any]) -> dict[str, Any]:
    """Return backend status information."""
    status = BackendStatus(
        version=__version__,
        running=_running,
        uptime_seconds=time.time() - _start_time if _start_time else 0.0,
        python_version=f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        services=_service_manager.get_status() if _service_manager else None,
    )
    return status.model_dump()


@handler("shutdown")
def handle_shutdown(params: dict[str, Any]) -> str:
    """Signal the server to shut down gracefully."""
    global _running
    _running = False
    return "shutting_down"


def process_request(request_data: dict[str, Any]) -> IPCResponse:
    """Process a single IPC request and return a response."""
    try:
        request = IPCRequest.model_validate(request_data)
    except Exception as e:
        request_id = request_data.get("id", "unknown") if isinstance(request_data, dict) else "unknown"
        return IPCResponse(
            id=str(request_id),
            success=False,
            error=f"Invalid request format: {e}",
        )

    handler_func = _handlers.get(request.method)
    if handler_func is None:
        return IPCResponse(
            id=request.id,
            success=False,
            error=f"Unknown method: {request.method}",
        )

    try:
        result = handler_func(request.params)
        return IPCResponse(id=request.id, success=True, result=result)
    except Exception as e:
        logger.exception(f"Error handling {request.method}")
        return IPCResponse(id=request.id, success=False, error=str(e))


def send_message(message: BaseModel | dict[str, Any]) -> None:
    """Write one protocol line; safe to call from any thread."""
    if isinstance(message, BaseModel):
        line = message.model_dump_json()
    else:
        line = json.dumps(message)
    with _output_lock:
        _output.write(line + "\n")
        _output.flush()


def send_response(response: IPCResponse) -> None:
    send_message(response)


def forward_notification(name: str, data: dict[str, Any]) -> None:
    """NotificationBus subscriber that pushes changes to the client."""
    send_message(IPCNotification(event=name, data=data))


def serve(stdin: IO[str], stdout: IO[str]) -> None:
    """Read requests until shutdown or EOF."""
    global _output, _running

    _output = stdout
    _running = True

    while _running:
        try:
            line = stdin.readline()
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt, shutting down")
            break
        if not line:
            logger.info("stdin closed, shutting down")
            break

        line = line.strip()
        if not line:
            continue

        try:
            request_data = json.loads(line)
        except json.JSONDecodeError as e:
            send_response(IPCResponse(id="unknown", success=False, error=f"Invalid JSON: {e}"))
            continue

        send_response(process_request(request_data))


def run_server(manager: ServiceManager | None = None, start_services: bool = True) -> None:
    """
    Run the IPC server on stdin/stdout.

    Builds a ServiceManager (unless one is given), starts the background
    services, forwards all change notifications and serves requests until a
    shutdown request or EOF.
    """
    global _start_time

    _start_time = time.time()
    logger.info("IPC server starting")
    _register_handlers()

    service_results: dict[str, bool] = {}
    unsubscribe: Callable[[], None] | None = None
    try:
        set_service_manager(manager or ServiceManager())
        unsubscribe = get_service_manager().notifications.subscribe(ALL_EVENTS, forward_notification)
        if start_services:
            service_results = get_service_manager().start_all(notify=True)
    except Exception as e:
        logger.error(f"Failed to start services: {e}")

    send_message({"type": "ready", "version": __version__, "services": service_results})

    try:
        serve(sys.stdin, sys.stdout)
    finally:
        if unsubscribe is not None:
            unsubscribe()
        if _service_manager is not None:
            logger.info("Stopping all services...")
            _service_manager.stop_all()
        logger.info("IPC server stopped")
