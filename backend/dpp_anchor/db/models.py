"""
SQLAlchemy ORM models for status list bookkeeping.
One mapping row per issued credential, one pointer row per issuer.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class StatusListMappingRow(Base):
    """Credential id to (issuer, bit index, list address) assignment."""

    __tablename__ = "status_list_mappings"
    __table_args__ = (
        UniqueConstraint("issuer_did", "status_list_index", name="uq_status_list_issuer_index"),
        Index("ix_status_list_mappings_issuer", "issuer_did"),
    )

    credential_id: Mapped[str] = mapped_column(String(512), primary_key=True)
    issuer_did: Mapped[str] = mapped_column(String(512), nullable=False)
    status_list_index: Mapped[int] = mapped_column(Integer, nullable=False)
    status_list_cid: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class StatusListPointerRow(Base):
    """Current published status list address for an issuer."""

    __tablename__ = "status_list_pointers"

    issuer_did: Mapped[str] = mapped_column(String(512), primary_key=True)
    current_cid: Mapped[str] = mapped_column(String(256), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
