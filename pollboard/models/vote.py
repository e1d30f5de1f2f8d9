from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
import uuid

from pollboard.core.db import Base, utcnow

# choice_slot of every vote on a poll that allows a single choice
SINGLE_CHOICE_SLOT = "single"


class Vote(Base):
    """Vote model for tracking user votes."""

    __tablename__ = "votes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    poll_id = Column(
        String(36),
        ForeignKey("polls.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    option_id = Column(
        String(36),
        ForeignKey("poll_options.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(String(255), nullable=False, index=True)
    # The option id on multi-choice polls, SINGLE_CHOICE_SLOT otherwise
    choice_slot = Column(String(36), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'option_id', name='unique_user_option_vote'),
        UniqueConstraint('poll_id', 'user_id', 'choice_slot', name='unique_user_poll_choice'),
    )

    def __repr__(self):
        return f"<Vote(id={self.id}, poll_id={self.poll_id}, option_id={self.option_id})>"

    def to_dict(self):
        """Convert vote to a plain row dictionary."""
        return {
            "id": self.id,
            "poll_id": self.poll_id,
            "option_id": self.option_id,
            "user_id": self.user_id,
            "choice_slot": self.choice_slot,
            "created_at": self.created_at
        }
