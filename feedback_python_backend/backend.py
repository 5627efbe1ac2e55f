import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from feedback_python_backend.config import CORS_ALLOW_ORIGINS, LOG_LEVEL
from feedback_python_backend.db_session import AsyncSessionLocal, async_engine
from feedback_python_backend.deep_analytics_api import router as deep_analytics_router
from feedback_python_backend.errors import register_error_handlers
from feedback_python_backend.instrumentation import set_session_factory
from feedback_python_backend.middleware import configure_http_hardening
from feedback_python_backend.narrative_api import router as narrative_router
from feedback_python_backend.session_insights_api import router as session_insights_router
from feedback_python_backend.signals_api import router as signals_router

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("feedback_backend")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Oracle call logs are written through their own sessions
    set_session_factory(AsyncSessionLocal)
    logger.info("[INFO] API call tracking bound to database")
    yield
    logger.info("[INFO] Disposing database engine...")
    await async_engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(title="Feedback Pipeline", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    configure_http_hardening(app)
    register_error_handlers(app)

    app.include_router(session_insights_router)
    app.include_router(signals_router)
    app.include_router(deep_analytics_router)
    app.include_router(narrative_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "feedback_pipeline",
            "timestamp": datetime.now().isoformat(),
        }

    return app


feedback_app = create_app()
