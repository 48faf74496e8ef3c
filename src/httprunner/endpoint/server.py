"""FastAPI HTTP server exposing the configured command.

Endpoints (all behind optional Basic auth):

    GET|POST /run   -> start the command, stream its early stdout
    GET      /ls    -> "<RFC3339 start time> : <pid>" per live process
    POST     /kill  -> kill and forget every tracked process
    POST     /die   -> same as /kill, then shut the server down
"""

from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, status
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from httprunner import __version__
from httprunner.endpoint.auth import REALM, BasicAuth
from httprunner.runner.buffer import DEFAULT_CAPTURE_LIMIT
from httprunner.runner.executor import (
    DEFAULT_STDERR_LIMIT,
    CommandExecutor,
    RateLimitedError,
    SpawnError,
)
from httprunner.runner.limiter import RateLimiter
from httprunner.runner.registry import ProcessRegistry
from httprunner.runner.streaming import (
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_MAX_DURATION,
    NO_OUTPUT_MESSAGE,
    OutputStreamer,
)

logger = logging.getLogger(__name__)

SERVER_ID = f"httprunner/{__version__}"

KILLED_MESSAGE = "They have left for a better world."
FAREWELL_MESSAGE = "The sweet embrace of death, finally."
RATE_LIMITED_MESSAGE = "Command process creation is rate limited"
SPAWN_FAILED_MESSAGE = "Command failed to start"

DEFAULT_EXIT_DELAY = 1.0


def _raise_sigterm() -> None:
    """Ask the hosting server to shut down as if it received SIGTERM."""
    signal.raise_signal(signal.SIGTERM)


def create_app(
    command: str = "",
    executor: CommandExecutor | None = None,
    registry: ProcessRegistry | None = None,
    limiter: RateLimiter | None = None,
    auth: BasicAuth | None = None,
    rate: float = 1.0,
    capture_limit: int = DEFAULT_CAPTURE_LIMIT,
    stderr_limit: int = DEFAULT_STDERR_LIMIT,
    echo_output: bool = False,
    max_duration: float = DEFAULT_MAX_DURATION,
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    exit_delay: float = DEFAULT_EXIT_DELAY,
    on_die: Callable[[], None] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        command: Command line to run, split on whitespace. Ignored when an
            executor is given.
        executor: Optional pre-configured CommandExecutor (for testing).
        registry: Optional process registry to share with the executor.
        limiter: Optional spawn rate limiter; built from ``rate`` if None.
        auth: Basic auth checker, or None to allow every request.
        rate: Minimum seconds between two process starts (0 = no limit).
        capture_limit: Byte ceiling of each run's captured output.
        stderr_limit: Byte ceiling of stderr kept for failure logs.
        echo_output: Mirror command output to the server's stdout.
        max_duration: Absolute per-request streaming deadline in seconds.
        idle_timeout: Stop streaming after this many seconds without output.
        exit_delay: Seconds between answering /die and shutting down.
        on_die: Shutdown hook called by /die; defaults to raising SIGTERM.
    """
    if executor is None:
        executor = CommandExecutor(
            command,
            registry=registry if registry is not None else ProcessRegistry(),
            limiter=limiter if limiter is not None else RateLimiter(rate),
            capture_limit=capture_limit,
            stderr_limit=stderr_limit,
            echo_output=echo_output,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        ex: CommandExecutor = app.state.executor
        logger.info(
            "Endpoint started (command=%s, rate=%.3fs)",
            " ".join(ex.argv),
            ex.limiter.interval,
        )
        yield
        await ex.aclose()
        logger.info(
            "Endpoint stopped (%d process(es) still running)", len(ex.registry)
        )

    security = HTTPBasic(auto_error=False, realm=REALM)

    async def authorize(
        credentials: HTTPBasicCredentials | None = Depends(security),
    ) -> None:
        checker: BasicAuth | None = app.state.auth
        if checker is None or checker.is_allowed(credentials):
            return
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
        )

    app = FastAPI(
        title="httprunner",
        description="Run a preconfigured command over HTTP",
        version=__version__,
        lifespan=lifespan,
        dependencies=[Depends(authorize)],
    )

    app.state.executor = executor
    app.state.registry = executor.registry
    app.state.auth = auth
    app.state.max_duration = max_duration
    app.state.idle_timeout = idle_timeout
    app.state.exit_delay = exit_delay
    app.state.on_die = on_die if on_die is not None else _raise_sigterm

    @app.api_route("/run", methods=["GET", "POST"])
    async def run_command() -> Response:
        streamer = OutputStreamer(
            app.state.executor,
            max_duration=app.state.max_duration,
            idle_timeout=app.state.idle_timeout,
        )
        try:
            await streamer.start()
        except RateLimitedError:
            return PlainTextResponse(
                RATE_LIMITED_MESSAGE, status_code=status.HTTP_429_TOO_MANY_REQUESTS
            )
        except SpawnError:
            return PlainTextResponse(
                SPAWN_FAILED_MESSAGE, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        try:
            first = await streamer.next_chunk()
        except asyncio.CancelledError:
            streamer.finish()
            raise
        if first is None:
            return PlainTextResponse(NO_OUTPUT_MESSAGE)
        # Status and headers go out with the first chunk and never change
        return StreamingResponse(streamer.stream(first), media_type="text/plain")

    @app.get("/ls")
    async def list_processes() -> PlainTextResponse:
        registry: ProcessRegistry = app.state.registry
        lines = [f"{info.format_line()}\n" for info in registry.list_ordered()]
        return PlainTextResponse("".join(lines))

    @app.post("/kill")
    async def kill_all() -> PlainTextResponse:
        registry: ProcessRegistry = app.state.registry
        registry.terminate_all()
        return PlainTextResponse(KILLED_MESSAGE)

    @app.post("/die")
    async def die(background_tasks: BackgroundTasks) -> PlainTextResponse:
        registry: ProcessRegistry = app.state.registry
        registry.terminate_all()
        logger.info(FAREWELL_MESSAGE)
        background_tasks.add_task(_exit_later, app.state.exit_delay, app.state.on_die)
        return PlainTextResponse(FAREWELL_MESSAGE)

    return app


async def _exit_later(delay: float, on_die: Callable[[], None]) -> None:
    """Let the farewell response flush, then trigger shutdown."""
    await asyncio.sleep(delay)
    logger.info("Shutting down")
    on_die()
