from sqlalchemy import Column, String, DateTime, Boolean, Text, Integer
import uuid

from pollboard.core.db import Base, utcnow


class Poll(Base):
    """Poll model for storing poll information."""

    __tablename__ = "polls"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    # Identity issued by the external provider; there is no local users table
    created_by = Column(String(255), nullable=False, index=True)
    is_public = Column(Boolean, default=True, nullable=False, index=True)
    allow_multiple_votes = Column(Boolean, default=False, nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    # Optimistic concurrency token, bumped on every update
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Poll(id={self.id}, title={self.title[:50]}...)>"

    def to_dict(self):
        """Convert poll to a plain row dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "created_by": self.created_by,
            "is_public": self.is_public,
            "allow_multiple_votes": self.allow_multiple_votes,
            "end_date": self.end_date,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at
        }
