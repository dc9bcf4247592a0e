"""
Health check endpoint with database and last sync status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text
from api.dependencies import get_db
from core.database import utcnow
from schemas.api import HealthCheckResponse
from schemas.sync import SyncRunResponse
from models.sync_run import SyncRun
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - The most recent sync run
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    last_run = None
    if db_connected:
        try:
            result = await db.execute(
                select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(1)
            )
            run = result.scalar_one_or_none()
            if run is not None:
                last_run = SyncRunResponse.model_validate(run)
        except Exception as e:
            logger.error(f"Failed to fetch last sync run: {str(e)}")

    # Status calculation is handled by the validator in HealthCheckResponse
    return HealthCheckResponse(
        database_connected=db_connected,
        last_run=last_run,
        status="healthy",
        timestamp=utcnow()
    )
