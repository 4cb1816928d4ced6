from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.enrollments.router import router as enrollments_router
from app.api.v1.grades.router import router as grades_router
from app.core.config import Settings, get_settings
from app.core.logging import get_logger, setup_logging
from app.db.session import create_engine_from_settings, create_sessionmaker


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or get_settings()
        setup_logging(resolved)
        logger = get_logger(__name__)

        engine = create_engine_from_settings(resolved)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        logger.info("Application started", echo=resolved.database_echo)
        try:
            yield
        finally:
            await engine.dispose()
            logger.info("Application stopped")

    app = FastAPI(title="Enrollment & Grading Core", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(enrollments_router)
    app.include_router(grades_router)

    return app


app = create_app()
