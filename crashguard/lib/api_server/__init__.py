"""FastAPI server exposing the crash monitor's status and alert controls."""

from typing import Dict, List, Any, Optional
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError
import structlog

from ...errors import AlertAlreadyActiveError, InvalidContactError
from ...services.monitoring_controller import MonitoringController
from .websocket import websocket_endpoint, connection_manager

logger = structlog.get_logger(__name__)


class ConfigurationUpdateRequest(BaseModel):
    """Request model for configuration updates."""

    contact: Optional[str] = Field(None, max_length=32)
    threshold: Optional[float] = Field(None, gt=0, le=500.0)
    countdown_ms: Optional[int] = Field(None, ge=1000, le=600000)


class StatusResponse(BaseModel):
    """Response model for /status endpoint."""

    timestamp: datetime
    status: Dict[str, Any]
    monitoring: Dict[str, Any]
    session: Optional[Dict[str, Any]] = None


class ConfigurationResponse(BaseModel):
    """Response model for /config endpoint."""

    contact: str
    contact_configured: bool
    detection: Dict[str, Any]
    countdown: Dict[str, Any]
    messaging: Dict[str, Any]
    sensor: Dict[str, Any]


class AlertResponse(BaseModel):
    """Response model for alert actions."""

    message: str
    status: Dict[str, Any]
    session: Optional[Dict[str, Any]] = None


class HistoryResponse(BaseModel):
    """Response model for /history endpoint."""

    statuses: List[Dict[str, Any]]
    sessions: List[Dict[str, Any]]


# Global reference to the running controller
_controller: Optional[MonitoringController] = None


def set_controller(controller: Optional[MonitoringController]) -> None:
    """Set the controller served by the API."""
    global _controller
    _controller = controller
    connection_manager.attach(controller)


def get_controller() -> MonitoringController:
    """Get the controller served by the API."""
    if _controller is None:
        raise HTTPException(status_code=503, detail="Monitoring controller not running")
    return _controller


def _session_dict(controller: MonitoringController) -> Optional[Dict[str, Any]]:
    session = controller.active_session
    return session.model_dump(mode='json') if session else None


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("API server starting up")
    connection_manager.start_background_tasks()

    yield

    await connection_manager.stop_background_tasks()
    logger.info("API server shutting down")


def create_app() -> FastAPI:
    """Create FastAPI application with all routes."""

    app = FastAPI(
        title="CrashGuard API",
        description="Crash detection status and emergency alert controls",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        """Current monitor status, detector statistics and active alert."""
        controller = get_controller()
        return StatusResponse(
            timestamp=datetime.now(),
            status=controller.status.export_dict(),
            monitoring=controller.get_monitoring_stats(),
            session=_session_dict(controller)
        )

    @app.get("/config", response_model=ConfigurationResponse)
    async def get_config():
        """Current configuration (delivery credentials excluded)."""
        config = get_controller().configuration
        return ConfigurationResponse(
            contact=config.contact,
            contact_configured=config.has_contact,
            detection=config.detection.model_dump(mode='json'),
            countdown=config.countdown.model_dump(mode='json'),
            messaging={"provider": config.messaging.provider.value},
            sensor=config.sensor.model_dump(mode='json')
        )

    @app.post("/config")
    async def update_config(update_request: ConfigurationUpdateRequest):
        """Update contact, threshold or countdown length."""
        controller = get_controller()

        try:
            updated_config = controller.configuration.model_copy(deep=True)

            if update_request.contact is not None:
                updated_config.contact = update_request.contact
            if update_request.threshold is not None:
                updated_config.detection.threshold = update_request.threshold
            if update_request.countdown_ms is not None:
                updated_config.countdown.duration_ms = update_request.countdown_ms

            await controller.update_configuration(updated_config)

        except ValidationError as e:
            logger.error("Configuration validation error", errors=e.errors())
            raise HTTPException(status_code=400, detail=f"Invalid configuration: {e}")

        logger.info("Configuration updated via API")
        return {"message": "Configuration updated successfully"}

    @app.post("/monitoring/enable", response_model=AlertResponse)
    async def enable_monitoring():
        """Turn crash detection on."""
        controller = get_controller()
        if not await controller.enable():
            raise HTTPException(status_code=409, detail=str(controller.status))
        return AlertResponse(message="Detection enabled", status=controller.status.export_dict())

    @app.post("/monitoring/disable", response_model=AlertResponse)
    async def disable_monitoring():
        """Turn crash detection off."""
        controller = get_controller()
        await controller.disable()
        return AlertResponse(message="Detection disabled", status=controller.status.export_dict())

    @app.post("/alert/simulate", response_model=AlertResponse)
    async def simulate_alert():
        """Start an alert countdown as if an impact had been detected."""
        controller = get_controller()

        try:
            await controller.simulate()
        except InvalidContactError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except AlertAlreadyActiveError as e:
            raise HTTPException(status_code=409, detail=str(e))

        return AlertResponse(
            message="Alert countdown started",
            status=controller.status.export_dict(),
            session=_session_dict(controller)
        )

    @app.post("/alert/cancel", response_model=AlertResponse)
    async def cancel_alert():
        """Cancel the pending alert ("I'm OK")."""
        controller = get_controller()

        if not await controller.cancel():
            raise HTTPException(status_code=409, detail="No pending alert to cancel")

        return AlertResponse(message="Alert canceled", status=controller.status.export_dict())

    @app.get("/history", response_model=HistoryResponse)
    async def get_history(count: int = 20):
        """Recent status changes and finished alert sessions."""
        controller = get_controller()
        count = max(1, min(count, 100))

        statuses = list(controller.status_history)[-count:]
        sessions = list(controller.recent_sessions)[-count:]
        return HistoryResponse(
            statuses=[s.export_dict() for s in statuses],
            sessions=[s.model_dump(mode='json') for s in sessions]
        )

    @app.websocket("/ws")
    async def websocket_route(websocket: WebSocket, client_id: Optional[str] = None):
        """Status change stream."""
        await websocket_endpoint(websocket, client_id)

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy" if _controller is not None and _controller.is_running else "degraded",
            "timestamp": datetime.now().isoformat(),
            "websocket_connections": len(connection_manager.active_connections)
        }

    return app


def run_server(app: FastAPI, host: str = "localhost", port: int = 5002, debug: bool = False):
    """Build a uvicorn server for the app; the caller awaits ``serve()``."""
    import uvicorn

    logger.info("Starting API server", host=host, port=port, debug=debug)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="debug" if debug else "info"
    )
    return uvicorn.Server(config)


__all__ = [
    "create_app",
    "run_server",
    "set_controller",
    "get_controller",
    "StatusResponse",
    "ConfigurationResponse",
    "AlertResponse",
    "HistoryResponse",
    "ConfigurationUpdateRequest"
]
