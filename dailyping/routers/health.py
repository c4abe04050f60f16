from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dailyping.config.settings import settings
from dailyping.db.session import get_sync_session
from dailyping.utils.errors import DatabaseError
from dailyping.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("/")
async def health_check(request: Request, db: Session = Depends(get_sync_session)):
    """
    Basic health check endpoint

    Returns application status and whether the database answers
    """
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        raise DatabaseError("Database is not reachable", "DB_UNAVAILABLE")

    return ResponseBuilder.success(
        request=request,
        data={
            "status": "healthy",
            "service": settings.NAME,
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
        },
        message="Service is running",
    )
