"""
FastAPI Server - REST API for the UI collaborator

Provides HTTP endpoints for:
- Read-only projections (capture, flash, mode, status message)
- Camera, flash and mode commands
- Snapshot download and live overlay frame

Security: Designed for localhost or a TLS-terminating proxy. Camera
capture itself is refused for non-secure, non-loopback origins.
"""

import logging
from datetime import datetime
from typing import Any

import psutil
import uvicorn
from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel

from livedetect import __version__
from livedetect.errors import ErrorKind
from livedetect.inference.detection import DisplayMode

logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    """System status response."""

    timestamp: str
    system: dict[str, Any]
    controller: dict[str, Any] | None


class ActionResponse(BaseModel):
    """Command result response."""

    success: bool
    message: str
    error: str | None = None
    timestamp: str


class ModeRequest(BaseModel):
    """Display mode request body."""

    mode: DisplayMode


# Errors that map to a conflict with the current state rather than a fault
CONFLICT_ERRORS = {
    ErrorKind.CAMERA_NOT_ACTIVE,
    ErrorKind.TORCH_UNSUPPORTED,
    ErrorKind.MODEL_NOT_LOADED,
}

# Global controller reference
_controller = None


def set_controller(controller) -> None:
    """Set reference to the lifecycle controller."""
    global _controller
    _controller = controller


def _require_controller():
    if _controller is None:
        raise HTTPException(status_code=503, detail="Controller not available")
    return _controller


def _action_response(result) -> ActionResponse:
    return ActionResponse(
        success=result.success,
        message=result.message,
        error=result.error.value if result.error else None,
        timestamp=datetime.now().isoformat(),
    )


def create_app(controller=None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if controller is not None:
        set_controller(controller)

    app = FastAPI(
        title="LiveDetect API",
        description="Live object detection overlay with camera controls",
        version=__version__,
    )

    # ==================== Status Endpoints ====================

    @app.get("/", response_model=dict)
    async def root():
        """Root endpoint - basic health check."""
        return {
            "service": "LiveDetect",
            "version": __version__,
            "status": "running",
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        """Get full system status."""
        system_status = {
            "cpu_percent": psutil.cpu_percent(),
            "memory_percent": psutil.virtual_memory().percent,
        }
        return StatusResponse(
            timestamp=datetime.now().isoformat(),
            system=system_status,
            controller=_controller.get_status() if _controller else None,
        )

    # ==================== Model ====================

    @app.post("/model/load", response_model=ActionResponse)
    async def load_model():
        """Load the detector (no-op when already loaded)."""
        controller = _require_controller()
        return _action_response(await controller.load_model())

    # ==================== Camera Control ====================

    @app.post("/camera/toggle", response_model=ActionResponse)
    async def toggle_camera():
        """Turn the camera on or off."""
        controller = _require_controller()
        return _action_response(await controller.toggle_camera())

    @app.post("/flash/toggle", response_model=ActionResponse)
    async def toggle_flash():
        """Toggle the camera torch."""
        controller = _require_controller()
        result = await controller.toggle_flash()
        if result.error in CONFLICT_ERRORS:
            raise HTTPException(status_code=409, detail=result.message)
        return _action_response(result)

    # ==================== Display Mode ====================

    @app.post("/mode", response_model=ActionResponse)
    async def set_mode(request: ModeRequest):
        """Set the display mode ('all' or 'animals')."""
        controller = _require_controller()
        return _action_response(controller.set_mode(request.mode))

    @app.post("/mode/toggle", response_model=ActionResponse)
    async def toggle_mode():
        """Switch between all objects and animals only."""
        controller = _require_controller()
        return _action_response(controller.toggle_mode())

    # ==================== Snapshot / Frame ====================

    @app.post("/snapshot")
    async def take_snapshot():
        """Capture an annotated PNG and return it as a download."""
        controller = _require_controller()
        result = await controller.snapshot()

        if not result.success:
            status = 409 if result.error in CONFLICT_ERRORS else 500
            raise HTTPException(status_code=status, detail=result.message)

        snap = result.data
        return Response(
            content=snap.data,
            media_type=snap.media_type,
            headers={"Content-Disposition": f'attachment; filename="{snap.filename}"'},
        )

    @app.get("/frame")
    async def live_frame():
        """Return the current overlay frame as JPEG."""
        controller = _require_controller()
        image_bytes = await controller.render_frame_jpeg()

        if image_bytes is None:
            raise HTTPException(status_code=409, detail="Please turn on the camera first.")

        return Response(
            content=image_bytes,
            media_type="image/jpeg",
            headers={"Cache-Control": "no-store"},
        )

    return app


async def start_server(
    host: str = "127.0.0.1",
    port: int = 8080,
    controller=None,
) -> None:
    """
    Start the API server.

    Args:
        host: Bind host
        port: Bind port
        controller: LifecycleController instance
    """
    app = create_app(controller)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=True,
    )
    server = uvicorn.Server(config)

    logger.info(f"Starting API server on {host}:{port}")
    await server.serve()
