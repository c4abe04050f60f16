from fastapi import APIRouter

from .entries import entries_router
from .health import health_router

main_router = APIRouter()
main_router.include_router(health_router, prefix="/health", tags=["Health Checks"])
main_router.include_router(entries_router, prefix="/users", tags=["Entries"])
