"""
FastAPI server for the voice shopping assistant.

Endpoints:
- GET /health: Health check
- GET /metrics: JSON metrics
- WS /ws: Browser relay WebSocket (speech session events, page state, UI commands)
"""

import asyncio
import sys

# 2025 Performance: Use uvloop for faster asyncio (Linux only)
try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass  # uvloop not available on Windows

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Any
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from src.shopvoice.config import get_config, init_config, ConfigError


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

logger = structlog.get_logger(__name__)


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    total_connections: int = 0
    active_connections: int = 0
    total_sessions: int = 0
    active_sessions: int = 0
    invalid_messages: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_connections": self.total_connections,
            "active_connections": self.active_connections,
            "total_sessions": self.total_sessions,
            "active_sessions": self.active_sessions,
            "invalid_messages": self.invalid_messages,
            "errors": self.errors,
        }


# Global metrics
metrics = ServerMetrics()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting voice shopping assistant server...")

    try:
        config = init_config()
        configure_logging(config.log_level)

        # Validate the oracle model at startup
        from src.shopvoice.oracle import initialize_oracle
        await initialize_oracle()

        logger.info(
            "Server ready",
            port=config.port,
            llm_provider=config.llm_provider,
        )

    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except SystemExit:
        raise
    except Exception as e:
        logger.error("Startup failed", error=str(e))
        sys.exit(1)

    yield

    logger.info("Shutting down server...")


app = FastAPI(
    title="Voice Shopping Assistant",
    description="Voice command interpretation and guided checkout for a storefront",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "active_sessions": metrics.active_sessions,
        }
    )


@app.get("/metrics")
async def get_metrics() -> JSONResponse:
    """Metrics endpoint."""
    return JSONResponse(content=metrics.to_dict())


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Browser relay WebSocket endpoint.

    One connection drives one shopper conversation: the browser relays speech
    session events and page state, we answer with session control, spoken
    prompts and UI commands.
    """
    await websocket.accept()

    metrics.total_connections += 1
    metrics.active_connections += 1
    metrics.total_sessions += 1
    metrics.active_sessions += 1

    connection_id = f"conn_{int(time.time() * 1000)}"
    log = logger.bind(connection_id=connection_id)
    log.info("WebSocket connected", active_sessions=metrics.active_sessions)

    # Import here to avoid circular imports and speed up startup
    from src.shopvoice.relay import RelayConnection

    connection = None

    try:
        connection = RelayConnection(websocket.send_text)
        await connection.start()

        while True:
            try:
                message = await websocket.receive_text()
                await connection.handle_message(message)

            except WebSocketDisconnect:
                log.info("WebSocket disconnected")
                break
            except ValueError as e:
                log.warning("Invalid relay message", error=str(e))
                metrics.invalid_messages += 1
                continue
            except Exception as e:
                log.error("Error handling WebSocket message", error=str(e))
                metrics.errors += 1
                # Continue processing - don't crash on single message error
                continue

    except Exception as e:
        log.error("WebSocket handler error", error=str(e))
        metrics.errors += 1

    finally:
        if connection:
            try:
                await connection.stop()
            except Exception as e:
                log.error("Error stopping connection", error=str(e))

        metrics.active_connections -= 1
        metrics.active_sessions -= 1

        log.info("Session ended", active_sessions=metrics.active_sessions)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )
    metrics.errors += 1

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    try:
        config = get_config()
    except Exception:
        # Use defaults if config fails
        config = type('Config', (), {'port': 7860, 'log_level': 'INFO'})()

    configure_logging(getattr(config, 'log_level', 'INFO'))

    logger.info(
        "Starting server",
        port=getattr(config, 'port', 7860),
    )

    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=getattr(config, 'port', 7860),
        log_level=getattr(config, 'log_level', 'INFO').lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
