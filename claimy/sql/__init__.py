"""SQL-based claim store implementation using SQLAlchemy."""

from .sql_claim_store import SqlClaimStore
from .models import Base, SqlClaim

__all__ = ["SqlClaimStore", "Base", "SqlClaim"]
