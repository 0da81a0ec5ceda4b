import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.exception_handlers import register_exception_handlers
from app.db.mongo import connect_to_mongo, close_mongo_connection
from app.middleware.rate_limiter import RateLimitMiddleware, close_rate_limiter
from app.routes import invoices

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_mongo()
    yield
    await close_mongo_connection()
    await close_rate_limiter()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.PROJECT_VERSION,
        description=settings.DESCRIPTION,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get(settings.API_PREFIX)
    async def root():
        return {"message": "Welcome to the Invoice Payments API"}

    @app.get(f"{settings.API_PREFIX}/health")
    async def health():
        return {"status": "OK", "message": "Server is running"}

    app.include_router(invoices.router, prefix=settings.API_PREFIX)
    return app


app = create_app()
