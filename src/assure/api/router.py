"""Master API router mounted at /api/v1."""

from fastapi import APIRouter

from assure.api.routes import health, jobs, regulations, specs

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(jobs.router)
api_router.include_router(regulations.router)
api_router.include_router(specs.router)
