from contextlib import asynccontextmanager
from typing import Callable, Optional
import uuid
from datetime import datetime, timezone
import structlog
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from gateway.application.services import GatewayServices
from gateway.config import load_config
from gateway.infrastructure.observability.logging import bind_request_context, setup_logging
from gateway.infrastructure.security.loopback import POLICY_VIOLATION, is_loopback
from .handlers.dispatch import describe_validation_error, dispatch_message
from .schema.events import ErrorEvent
from .schema.messages import parse_client_message
from .transport import WebSocketTransport

logger = structlog.get_logger(__name__)

PeerCheck = Callable[[Optional[str]], bool]


def create_app(
    services: Optional[GatewayServices] = None,
    is_trusted_peer: PeerCheck = is_loopback,
) -> FastAPI:
    """Build the gateway app around one service container"""

    if services is None:
        config = load_config()
        setup_logging(config.log_level, config.log_format)
        services = GatewayServices(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start()
        logger.info("WebSocket server started", host=services.config.host, port=services.config.port)
        yield
        await services.shutdown()
        logger.info("WebSocket server shutdown")

    app = FastAPI(title="Agent Gateway", lifespan=lifespan)
    app.state.services = services

    @app.websocket("/ws")
    async def gateway_websocket(websocket: WebSocket):
        """Main WebSocket endpoint, loopback peers only"""

        host = websocket.client.host if websocket.client else None
        if not is_trusted_peer(host):
            logger.warning("Rejected non-loopback connection", host=host)
            await websocket.close(code=POLICY_VIOLATION)
            return

        connection_id = uuid.uuid4().hex
        manager = services.connections
        conn = await manager.connect(websocket, connection_id)
        transport = WebSocketTransport(manager, connection_id)
        bind_request_context(connection_id=connection_id)

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    msg = parse_client_message(raw)
                except ValidationError as e:
                    logger.warning("Invalid client message", error=str(e))
                    await transport.send(ErrorEvent(code="INVALID_MESSAGE", message=describe_validation_error(e)))
                    continue

                await dispatch_message(services, transport, conn, msg)

        except WebSocketDisconnect:
            logger.info("Client disconnected", connection_id=connection_id)
        except Exception as e:
            logger.error("WebSocket error", connection_id=connection_id, error=str(e), exc_info=True)
        finally:
            await manager.disconnect(connection_id)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "active_connections": len(services.connections.active_connections),
            "scheduled_jobs": len(services.scheduler.list_active()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app
