from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import asyncio

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import structlog

from searchchat.application.api.route.chat import router as chat_router
from searchchat.domain.capability.base import ModelCapability, SearchCapability
from searchchat.domain.conversation.conversation_store import ConversationStore, sweep_idle_threads
from searchchat.domain.orchestration.turn_engine import TurnEngine
from searchchat.domain.tool.tool_registry import build_default_registry
from searchchat.infrastructure.config.settings import Settings, get_settings
from searchchat.infrastructure.llm.chat_model import build_chat_model
from searchchat.infrastructure.observability.logging import MetricsCollector, setup_logging
from searchchat.infrastructure.search.tavily_search import TavilySearchCapability

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the idle-thread sweeper when thread eviction is enabled"""

    settings: Settings = app.state.settings
    sweeper: Optional[asyncio.Task] = None

    if settings.thread_idle_ttl_seconds > 0:
        sweeper = asyncio.create_task(sweep_idle_threads(
            app.state.conversation_store,
            settings.thread_idle_ttl_seconds,
            settings.thread_sweep_interval_seconds,
        ))

    logger.info("Chat server started")
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
        search = app.state.search
        if isinstance(search, TavilySearchCapability):
            await search.aclose()
        logger.info("Chat server shutdown")


def create_app(
    settings: Optional[Settings] = None,
    model: Optional[ModelCapability] = None,
    search: Optional[SearchCapability] = None,
    store: Optional[ConversationStore] = None,
) -> FastAPI:
    """Build the application; capabilities default to the configured providers"""

    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    metrics = MetricsCollector()
    store = store or ConversationStore()
    search = search or TavilySearchCapability(settings)
    model = model or build_chat_model(settings)

    engine = TurnEngine(
        store=store,
        model=model,
        tool_registry=build_default_registry(search),
        max_tool_rounds=settings.max_tool_rounds,
        turn_timeout_seconds=settings.turn_timeout_seconds,
        event_queue_size=settings.event_queue_size,
        metrics=metrics,
    )

    app = FastAPI(title="searchchat", lifespan=lifespan)
    app.state.settings = settings
    app.state.conversation_store = store
    app.state.search = search
    app.state.metrics = metrics
    app.state.turn_engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        state = request.app.state
        return {
            "status": "healthy",
            "turns_in_flight": state.turn_engine.in_flight,
            "threads": state.conversation_store.thread_count(),
            "metrics": state.metrics.get_metrics_summary(),
            "timestamp": datetime.utcnow().isoformat()
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "searchchat.application.api.api_server:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
    )
