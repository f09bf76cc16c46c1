"""SQLAlchemy models for the BMA document collections."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all BMA tables."""


class RawPageData(Base):
    """A listing page submitted by the browser extension."""

    __tablename__ = "raw_page_data"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    url: Mapped[str] = mapped_column(Text, default="")
    content: Mapped[str] = mapped_column(Text, default="")
    # Extracted address; the upsert key for re-ingestion
    address: Mapped[str] = mapped_column(Text, unique=True, nullable=False, index=True)
    property_details: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<RawPageData {self.address}>"


class Address(Base):
    """An address participating (or not) in the BMA comparison."""

    __tablename__ = "addresses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    raw_page_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("raw_page_data.id", ondelete="SET NULL")
    )
    address_str: Mapped[str] = mapped_column(Text, unique=True, nullable=False, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        flags = "primary" if self.primary else ("enabled" if self.enabled else "disabled")
        return f"<Address {self.address_str} ({flags})>"


class CachedBMAReport(Base):
    """A generated report keyed by primary ID and the sorted comparison IDs."""

    __tablename__ = "cached_bma_reports"
    __table_args__ = (
        UniqueConstraint("primary_address_id", "comparison_key", name="uq_cached_bma_report_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    primary_address_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    # Sorted comparison IDs joined with commas
    comparison_key: Mapped[str] = mapped_column(Text, nullable=False)
    comparison_address_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    report: Mapped[dict] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<CachedBMAReport {self.primary_address_id} [{self.comparison_key}]>"


class LLMInstructions(Base):
    """Operator-editable text injected into the detailed-analysis prompt."""

    __tablename__ = "llm_instructions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    instructions: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
