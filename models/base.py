from sqlalchemy import BigInteger, Enum, Integer
from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class SyncStatus(str, enum.Enum):
    """Sync run status"""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncType(str, enum.Enum):
    """Run kind tags"""
    FULL = "full_sync"
    MANUAL = "manual_sync"
    SCHEDULED = "scheduled_sync"


class SyncOutcome(str, enum.Enum):
    """Result of reconciling one source record"""
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


def value_enum(enum_cls) -> Enum:
    """Store enum values (not member names) in a plain VARCHAR column."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


# BIGINT in production; SQLite only auto-increments INTEGER primary keys
BigIntegerPK = BigInteger().with_variant(Integer(), "sqlite")
