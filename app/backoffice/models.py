from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class AuditEvent(Base):
    """
    Append-only trail of staff actions performed through the backoffice.
    The domain data lives in the remote API; this table is the only local state.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_created_at", "created_at"),
        Index("idx_audit_events_action", "action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(64), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "course.update"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Course"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
