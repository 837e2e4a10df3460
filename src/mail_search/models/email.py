"""Email entity models.

These tables are owned by the ingestion pipeline. The retrieval engine only
reads them, to scope searches and to hydrate hits into typed records.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mail_search.models.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmailAccount(Base):
    """A connected mailbox, owned by an organization."""

    __tablename__ = "email_account"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    email_address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    threads = relationship("EmailThread", back_populates="account", cascade="all, delete-orphan")


class EmailThread(Base):
    """A conversation thread within one account."""

    __tablename__ = "email_thread"
    __table_args__ = (Index("ix_email_thread_last_message_at", "last_message_at"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(
        String, ForeignKey("email_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    brief_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    message_count: Mapped[int] = mapped_column(Integer, default=0)

    account = relationship("EmailAccount", back_populates="threads")
    messages = relationship("EmailMessage", back_populates="thread", cascade="all, delete-orphan")


class EmailMessage(Base):
    """A single message in a thread."""

    __tablename__ = "email_message"
    __table_args__ = (Index("ix_email_message_sent_at", "sent_at"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    thread_id: Mapped[str] = mapped_column(
        String, ForeignKey("email_thread.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    from_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    subject: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    body_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    thread = relationship("EmailThread", back_populates="messages")


class Claim(Base):
    """A statement extracted from a message (decision, commitment, question...)."""

    __tablename__ = "claim"
    __table_args__ = (Index("ix_claim_org_type", "organization_id", "type"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    thread_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("email_thread.id", ondelete="CASCADE"), nullable=True, index=True
    )
    message_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("email_message.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
