from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise

from app import settings
from app.cache import close_redis
from app.deps import close_mailgun_http_client
from app.errors import install_exception_handlers
from app.logger import setup_logging
from app.models import seed_statuses
from app.routers.booking import router as booking_router

TORTOISE_ORM = {
    "connections": {"default": settings.db_url},
    "apps": {"models": {"models": ["app.models"], "default_connection": "default"}},
    "use_tz": True,
    "timezone": "UTC",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting bookings service")
    async with RegisterTortoise(app, config=TORTOISE_ORM, generate_schemas=True):
        await seed_statuses()
        logger.info("booking_status table seeded")
        yield
    await close_mailgun_http_client()
    await close_redis()
    logger.info("Bookings service stopped")


def create_app() -> FastAPI:
    setup_logging()

    app = FastAPI(title="Room Bookings", version="0.1.0", lifespan=lifespan)
    install_exception_handlers(app)
    app.include_router(booking_router, prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT)
