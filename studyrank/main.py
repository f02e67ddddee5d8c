import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from studyrank.core.config import settings
from studyrank.core.database import get_database
from studyrank.core.exceptions import NotFoundError, PersistenceError
from studyrank.core.logging_config import init_logging
from studyrank.routers import achievements, gamification, reviews, study
from studyrank.services.catalog import seed_catalog

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.seed_catalog_on_startup:
        seed_catalog(await get_database())
    yield

# Create FastAPI instance
app = FastAPI(
    title=settings.app_name,
    description="Study tracker with spaced reviews, subject ranks and achievements",
    version=settings.version,
    lifespan=lifespan
)

init_logging(app)

# CORS middleware for the web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.include_router(study.router, prefix="/study", tags=["Study"])
app.include_router(reviews.router, prefix="/reviews", tags=["Reviews"])
app.include_router(gamification.router, prefix="/gamification", tags=["Gamification"])
app.include_router(achievements.router, prefix="/achievements", tags=["Achievements"])


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Could not save your progress right now. Please try again."}
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.app_name}!",
        "version": settings.version,
        "docs": "/docs",
        "status": "ready_to_study"
    }

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "services": {
            "reviews": "ready",
            "progression": "ready",
            "achievements": "active"
        }
    }

if __name__ == "__main__":
    uvicorn.run(
        "studyrank.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
