"""
Coverage Advisor Backend - Main Application Entry Point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from advisor.core.config import settings
from advisor.core.langfuse_handler import flush_langfuse
from advisor.core.logging import logger
from advisor.api.routes import chat
from advisor.orchestration.tools.transport import get_tool_pool
from advisor.services.chat import ChatService
from advisor.services.estimate import get_ratebook


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    # Startup; a missing ratebook aborts here
    logger.info(f"Starting {settings.APP_NAME} in {settings.APP_ENV} mode")
    ratebook = get_ratebook()
    app.state.ratebook = ratebook
    if getattr(app.state, "chat_service", None) is None:
        app.state.chat_service = ChatService(ratebook=ratebook)
    yield
    # Shutdown
    logger.info("Shutting down...")
    pool = get_tool_pool()
    if pool is not None:
        await pool.close()
    flush_langfuse()


app = FastAPI(
    title=settings.APP_NAME,
    description="Personal-lines Insurance Advisor",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001", "http://localhost:3002"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API Routers
app.include_router(chat.router, prefix="/chat", tags=["Chat"])


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "env": settings.APP_ENV,
    }
