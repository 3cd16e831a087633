"""
Lock/token table for single-writer access to sources.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from pricetracker.core.database import Base


class SourceLock(Base):
    """A held lease; the primary key makes acquisition an atomic insert."""

    __tablename__ = "source_locks"

    # "source:<uuid>" or "catalog"
    lock_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)

    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<SourceLock(key={self.lock_key}, owner={self.owner}, expires_at={self.expires_at})>"
