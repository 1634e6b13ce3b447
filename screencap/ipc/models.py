"""IPC request/response models for the line-delimited JSON protocol."""

from typing import Any

from pydantic import BaseModel, Field


class IPCRequest(BaseModel):
    """Request model for IPC communication."""

    id: str = Field(..., description="Unique request identifier")
    method: str = Field(..., description="Method to invoke")
    params: dict[str, Any] = Field(default_factory=dict, description="Method parameters")


class IPCResponse(BaseModel):
    """Response model for IPC communication."""

    id: str = Field(..., description="Request identifier this response corresponds to")
    success: bool = Field(..., description="Whether the request succeeded")
    result: Any = Field(default=None, description="Result data if successful")
    error: str | None = Field(default=None, description="Error message if failed")


class IPCNotification(BaseModel):
    """Unsolicited change notification pushed to the client."""

    event: str = Field(..., description="Notification name, e.g. 'event.created'")
    data: dict[str, Any] = Field(default_factory=dict, description="Notification payload")


class BackendStatus(BaseModel):
    """Status information about the Python backend."""

    version: str = Field(..., description="Backend version")
    running: bool = Field(default=True, description="Whether the backend is running")
    uptime_seconds: float = Field(..., description="Seconds since backend started")
    python_version: str = Field(..., description="Python version")
    services: dict[str, Any] | None = Field(
        default=None, description="Service, capture and queue status"
    )
