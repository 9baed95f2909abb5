"""SQLAlchemy models for claim storage."""

from datetime import UTC, datetime

try:
    from sqlalchemy import Column, DateTime, Integer, String, Text
    from sqlalchemy.orm import declarative_base
    from sqlalchemy.types import TypeDecorator
except ImportError as e:
    raise ImportError(
        "SQLAlchemy is required for the SQL claim store. Install with: pip install claimy[sql]"
    ) from e


class UtcDateTime(TypeDecorator):
    """Timezone aware datetime column.

    Backends without timezone support (SQLite) hand back naive values, which are
    stored in UTC and so have UTC attached on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


Base = declarative_base()


class SqlClaim(Base):
    """SQLAlchemy model for claims."""

    __tablename__ = "claimy_claims"

    claim_id = Column(String(36), primary_key=True)
    wa_jid = Column(String(64), nullable=False, index=True)
    # Holds wa_jid while the claim is creating or active, NULL otherwise
    active_jid = Column(String(64), nullable=True, unique=True)
    template = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, index=True)
    username = Column(String(64), nullable=True)

    user_id = Column(Integer, nullable=True)
    server_id = Column(Integer, nullable=True)
    allocation_id = Column(Integer, nullable=True)
    node_id = Column(Integer, nullable=True)
    allocation_ip = Column(String(255), nullable=True)
    allocation_alias = Column(String(255), nullable=True)
    allocation_port = Column(Integer, nullable=True)
    panel_url = Column(String(255), nullable=True)

    delete_job_id = Column(String(255), nullable=True)
    deletion_scheduled_at = Column(UtcDateTime(), nullable=True)
    failure_code = Column(String(32), nullable=True)
    failure_reason = Column(Text, nullable=True)
    client_token_hash = Column(String(64), nullable=True)

    created_at = Column(UtcDateTime(), nullable=False, index=True)
    updated_at = Column(UtcDateTime(), nullable=False)
    last_event_at = Column(UtcDateTime(), nullable=True)
    last_healthcheck_at = Column(UtcDateTime(), nullable=True)

    # Optimistic concurrency for compare and set updates
    version = Column(Integer, nullable=False, default=1)

    def __repr__(self):
        return f"<SqlClaim(claim_id='{self.claim_id}', status='{self.status}')>"
