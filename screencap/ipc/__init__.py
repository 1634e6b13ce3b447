"""IPC module for frontend communication over stdin/stdout."""

from screencap.ipc.models import BackendStatus, IPCNotification, IPCRequest, IPCResponse
from screencap.ipc.server import handler, process_request, run_server

__all__ = [
    "BackendStatus",
    "IPCNotification",
    "IPCRequest",
    "IPCResponse",
    "handler",
    "process_request",
    "run_server",
]
