from sqlalchemy import Column, String, DateTime, Integer, ForeignKey
import uuid

from pollboard.core.db import Base, utcnow


class PollOption(Base):
    """Poll option model."""

    __tablename__ = "poll_options"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    poll_id = Column(
        String(36),
        ForeignKey("polls.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    text = Column(String(100), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<PollOption(id={self.id}, text={self.text[:30]}...)>"

    def to_dict(self):
        """Convert option to a plain row dictionary."""
        return {
            "id": self.id,
            "poll_id": self.poll_id,
            "text": self.text,
            "position": self.position,
            "created_at": self.created_at,
            "updated_at": self.updated_at
        }
