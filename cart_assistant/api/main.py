"""FastAPI main application."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cart_assistant.agent.factory import AssistantContainer
from cart_assistant.analytics.logger import logger
from cart_assistant.api.middleware import LoggingMiddleware
from cart_assistant.api.routes import chat, health
from cart_assistant.utils.config import Settings, settings as default_settings


def create_app(
    settings: Optional[Settings] = None, container: Optional[AssistantContainer] = None
) -> FastAPI:
    """Build the application; ``container`` is started by the lifespan hook."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        logger.info("Starting application...")
        app.state.container = await (container or AssistantContainer(settings)).start()
        logger.info("Application startup complete")

        yield

        # Shutdown
        logger.info("Shutting down application...")
        await app.state.container.close()

    app = FastAPI(
        title="Cart Assistant API",
        description="Conversational shopping-cart assistant with tool calling",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware
    cors_origins = settings.cors_origins.split(",") if settings.cors_origins else ["*"]
    if settings.production_mode and "*" in cors_origins:
        logger.warning("CORS is set to allow all origins in production. Consider restricting this.")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware
    app.add_middleware(LoggingMiddleware)

    # Include routers
    app.include_router(chat.router)
    app.include_router(health.router)

    return app


app = create_app()
