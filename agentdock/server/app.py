from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentdock import __version__
from agentdock.config import get_config
from agentdock.errors import AgentDockError
from agentdock.logging import configure_logging, get_logger
from agentdock.server.routers.messages import router as messages_router
from agentdock.server.routers.sessions import router as sessions_router
from agentdock.server.runtime import get_runtime, get_runtime_async, reset_runtime

_logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    configure_logging(config.log_level, json=config.log_json)
    await get_runtime_async(config)
    yield
    await reset_runtime()


app = FastAPI(
    title="agentdock",
    description="Coding agent session backend - API server",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(messages_router)


@app.exception_handler(AgentDockError)
async def handle_agentdock_error(request: Request, exc: AgentDockError) -> JSONResponse:
    if exc.status_code >= 500:
        _logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health():
    runtime = get_runtime()
    return {
        "status": "ok",
        "version": __version__,
        "activeSessions": await runtime.session_service.active_count(),
        "dispatcherRunning": runtime.dispatcher.is_running,
    }


@app.get("/queue/metrics")
async def queue_metrics():
    runtime = get_runtime()
    return await runtime.dispatcher.metrics()
