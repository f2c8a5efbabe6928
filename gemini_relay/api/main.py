from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request

from ..core.config_manager import ConfigManager
from ..core.logging import logger
from ..services.chat_service import ChatService
from .middleware import RequestLoggerMiddleware


def create_app(config_manager: Optional[ConfigManager] = None,
               httpx_client: Optional[httpx.AsyncClient] = None,
               watch_config: bool = True) -> FastAPI:
    """
    Build the relay application.

    ``httpx_client`` lets callers supply their own transport; a client
    created here is closed on shutdown, a supplied one is left to its owner.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Config reloader and httpx client live for the whole app lifetime
        reloader_task = app.state.config_manager.start_reloader_task() if watch_config else None

        owns_client = httpx_client is None
        app.state.httpx_client = httpx_client or httpx.AsyncClient()
        app.state.chat_service = ChatService(app.state.config_manager, app.state.httpx_client)
        logger.info("Gemini relay started", credential_configured=app.state.config_manager.get_settings().has_credential)

        try:
            yield
        finally:
            if reloader_task is not None:
                reloader_task.cancel()
            if owns_client:
                await app.state.httpx_client.aclose()
            logger.info("Gemini relay stopped")

    app = FastAPI(title="Gemini Relay", lifespan=lifespan)
    app.state.config_manager = config_manager or ConfigManager()
    app.add_middleware(RequestLoggerMiddleware)

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request):
        return await request.app.state.chat_service.chat_completions(request)

    @app.post("/v1/chat/title")
    async def chat_title(request: Request):
        return await request.app.state.chat_service.create_title(request)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
