from sqlalchemy import Column, String, DateTime, Integer, ForeignKey
import uuid

from pollboard.core.db import Base, utcnow


class PollAnalytics(Base):
    """System-maintained counters, one row per poll."""

    __tablename__ = "poll_analytics"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    poll_id = Column(
        String(36),
        ForeignKey("polls.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True
    )
    views = Column(Integer, default=0, nullable=False)
    shares = Column(Integer, default=0, nullable=False)
    unique_voters = Column(Integer, default=0, nullable=False)
    last_updated = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<PollAnalytics(poll_id={self.poll_id}, views={self.views})>"

    def to_dict(self):
        return {
            "id": self.id,
            "poll_id": self.poll_id,
            "views": self.views,
            "shares": self.shares,
            "unique_voters": self.unique_voters,
            "last_updated": self.last_updated
        }
