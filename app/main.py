from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from loguru import logger

from app.server.chat import router as chat_router
from app.server.files import router as files_router
from app.server.middleware import add_cors_middleware, add_exception_handler
from app.services.registry import Services, build_services
from app.utils import g_config
from app.utils.logging import setup_logging


async def _register_configured_users(services: Services) -> None:
    for user in g_config.auth.users:
        await services.record_store.register_user(user.id)


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application; `services` replaces the configured clients when given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or build_services(g_config)
        await _register_configured_users(app.state.services)
        logger.info(f"Registered {len(g_config.auth.users)} configured user(s)")
        yield
        logger.info("Shutting down")

    app = FastAPI(
        title="Gemini Chat",
        description="Multimodal chat backend for Gemini and Imagen models",
        version="1.0.0",
        lifespan=lifespan,
    )

    add_cors_middleware(app)
    add_exception_handler(app)

    app.include_router(chat_router)
    app.include_router(files_router)
    return app


setup_logging(g_config.logging.level)
app = create_app()


def main() -> None:
    server = g_config.server
    https = server.https
    uvicorn.run(
        "app.main:app",
        host=server.host,
        port=server.port,
        log_config=None,
        ssl_keyfile=https.key_file if https.enabled else None,
        ssl_certfile=https.cert_file if https.enabled else None,
    )


if __name__ == "__main__":
    main()
