import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Optional

import click

# Starlette and uvicorn imports
from starlette.applications import Starlette
from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket

import uvicorn

from config import env, get_server_settings, ServerSettings
from orchestrator.context import OrchestratorContext
from orchestrator.system_checks import check_worker_binary
from orchestrator.types import SessionRole
from server.api import api_routes
from server.handlers import MESSAGE_HANDLERS
from server.router import MessageRouter

logger = logging.getLogger(__name__)


async def session_endpoint(websocket: WebSocket):
    """One UI or worker connection; messages are handled in arrival order"""
    ctx: OrchestratorContext = websocket.app.state.context
    router: MessageRouter = websocket.app.state.router

    await websocket.accept()
    session = ctx.sessions.connect(websocket)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes")
            await router.dispatch(session.id, raw)
    finally:
        if session.role == SessionRole.WORKER:
            await ctx.executions.detach_worker(session.execution_id, session.id)
        ctx.sessions.disconnect(session.id)


def run_startup_checks(ctx: OrchestratorContext) -> None:
    result = check_worker_binary(ctx.settings.worker_binary)
    ctx.binary_found = result.found
    ctx.binary_error = result.error
    if result.found:
        logger.info(f"Worker binary found: {ctx.settings.worker_binary}")
    else:
        logger.warning(f"Worker binary check failed: {result.error}")


def create_app(
    context: Optional[OrchestratorContext] = None,
    settings: Optional[ServerSettings] = None,
    startup_checks: bool = True,
) -> Starlette:
    """Build the Starlette application around an orchestrator context"""
    if context is None:
        context = OrchestratorContext.create(settings or get_server_settings())

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        if startup_checks:
            run_startup_checks(context)
        cleanup_task = asyncio.create_task(
            context.executions.run_cleanup_loop(context.settings.cleanup_interval_seconds)
        )
        logger.info("Orchestration server ready")
        try:
            yield
        finally:
            logger.info("Shutting down: stopping executions and closing tunnels")
            cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup_task
            await context.shutdown()

    routes = [
        WebSocketRoute("/", endpoint=session_endpoint),
        WebSocketRoute("/ws", endpoint=session_endpoint),
    ] + api_routes

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.context = context
    app.state.router = MessageRouter(context, MESSAGE_HANDLERS)
    return app


# Setup function for logging and environment
def setup(log_level: str = "INFO") -> None:
    SCRIPT_DIR = Path(__file__).resolve().parent
    # Ensure the logs directory exists
    log_dir = SCRIPT_DIR / ".logs"
    log_dir.mkdir(exist_ok=True)

    log_file = log_dir / "server.log"

    # basicConfig won't do anything if the root logger already has handlers
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
        handler.close()

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # File handler
    file_handler = logging.FileHandler(str(log_file.absolute()))
    file_handler.setLevel(logging.DEBUG)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    root.addHandler(file_handler)
    root.addHandler(console_handler)


@click.command()
@click.option("--host", default=None, help="Interface to bind the session server to")
@click.option("--port", default=None, type=int, help="Port to run the server on")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Console log level",
)
def main(
    host: Optional[str] = None, port: Optional[int] = None, log_level: Optional[str] = None
) -> None:
    env.load()

    overrides = {
        name: value
        for name, value in (("host", host), ("port", port), ("log_level", log_level))
        if value is not None
    }
    if overrides:
        env.update_configuration({"settings": overrides})

    settings = get_server_settings()
    setup(settings.log_level)

    logging.info(f"Starting orchestration server on {settings.host}:{settings.port}")

    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=int(settings.shutdown_timeout_seconds),
    )


if __name__ == "__main__":
    main()
