"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional
from datetime import datetime
from schemas.sync import SyncRunResponse


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    database_connected: bool
    last_run: Optional[SyncRunResponse] = None
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Derive overall health from connectivity and the latest run"""
        if not values.get("database_connected", False):
            return "unhealthy"

        last_run = values.get("last_run")
        if last_run is not None and last_run.status == "failed":
            return "degraded"

        return "healthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2025-08-21T10:30:00Z",
                "database_connected": True,
                "last_run": {
                    "id": 12,
                    "sync_type": "scheduled_sync",
                    "status": "completed",
                    "total_products_fetched": 20,
                    "products_created": 0,
                    "products_updated": 20,
                    "started_at": "2025-08-21T10:00:00Z",
                    "completed_at": "2025-08-21T10:00:14Z",
                    "duration_seconds": 14
                }
            }
        }


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Batch not found",
                "detail": "No batch with id 0b6f...",
                "timestamp": "2025-08-21T10:30:00Z"
            }
        }
