"""
Core utilities and configuration for the catalog sync service.

Modules:
    config: Application configuration and environment variable management
    database: Database engine, session factory and dialect helpers
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import FetchFailure, ItemFailure
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "async_session_maker",
    "get_session",
    "setup_logging",
    # Exceptions
    "SyncException",
    "FetchFailure",
    "ItemFailure",
    "AssetFailure",
    "LedgerWriteFailure",
    "NotificationFailure",
    "BatchNotFoundError",
]
