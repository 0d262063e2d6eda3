"""FastAPI Application Entry Point"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from agent_scheduler.api.exception_handlers import register_exception_handlers
from agent_scheduler.api.middleware import RequestContextMiddleware, ErrorHandlingMiddleware
from agent_scheduler.api.v1 import health, schedules, executions, monitoring, scheduler, websocket
from agent_scheduler.core.config import settings
from agent_scheduler.core.database import init_database, close_database, get_session_factory
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.services.agent_adapter import AgentAdapter
from agent_scheduler.services.agent_runnables import ChatHandler, FlowExecutor, build_agent_adapter
from agent_scheduler.services.schedule_events import ScheduleEventBus, schedule_websocket_manager
from agent_scheduler.services.scheduling_engine import SchedulingEngine

logger = get_logger(__name__)


def create_app(
    adapter: Optional[AgentAdapter] = None,
    chat_handler: Optional[ChatHandler] = None,
    flow_executor: Optional[FlowExecutor] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        adapter: Agent adapter to use instead of the default resolvers
        chat_handler: Handler for system agents (prompt, context)
        flow_executor: Executor for flow agents (flow, context)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup and shutdown events"""
        # Startup: database, then the scheduling engine
        await init_database()

        events = ScheduleEventBus()
        events.subscribe(schedule_websocket_manager.broadcast)

        engine = SchedulingEngine(
            get_session_factory(),
            adapter or build_agent_adapter(chat_handler=chat_handler, flow_executor=flow_executor),
            events=events
        )
        app.state.engine = engine

        if settings.SCHEDULER_ENABLED:
            await engine.start()
        else:
            logger.info("scheduling_engine_disabled")

        yield

        # Shutdown: engine first so in-flight runs can still record results
        await engine.stop()
        app.state.engine = None
        await close_database()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan
    )

    register_exception_handlers(app)

    # Last added runs outermost
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    # Include routers
    app.include_router(health.router)
    app.include_router(schedules.router, prefix="/api/v1")
    app.include_router(executions.router, prefix="/api/v1")
    app.include_router(monitoring.router, prefix="/api/v1")
    app.include_router(scheduler.router, prefix="/api/v1")
    app.include_router(websocket.router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {"message": settings.APP_NAME, "version": settings.APP_VERSION}

    return app


app = create_app()
