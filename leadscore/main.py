

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leadscore.config import get_settings
from leadscore.api.routes import scoring
from leadscore.services.score_store import SQLScoreStore


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"LLM provider: {settings.llm_provider}")
    logger.info(f"Contact timezone: {settings.contact_timezone}")

    service = app.dependency_overrides.get(scoring.get_scoring_service, scoring.get_scoring_service)()
    if isinstance(service.store, SQLScoreStore):
        await service.store.create_tables()
    yield
    if isinstance(service.store, SQLScoreStore):
        await service.store.engine.dispose()
    logger.info("Shutting down application")



settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(scoring.router)


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "endpoints": {
            "score": "/api/v1/score",
            "score_batch": "/api/v1/score-batch"
        }
    }


@app.get("/health")
async def health_check():
    """Global health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "leadscore.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
