from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from typing import Annotated, List, Optional
from datetime import datetime, timezone

from pollboard.schemas.option import OptionResult, PollOptionRead

OptionText = Annotated[str, Field(min_length=1, max_length=100)]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PollInput(BaseModel):
    """Schema for creating or replacing a poll."""
    title: str = Field(..., min_length=5, max_length=255, description="Poll question")
    options: List[OptionText] = Field(..., min_length=2, max_length=10, description="Poll options")
    end_date: Optional[str] = Field(None, description="Optional closing time, ISO 8601")
    description: Optional[str] = Field(None, max_length=1000, description="Poll description")
    is_public: Optional[bool] = Field(None, description="Visible to everyone")
    allow_multiple_votes: Optional[bool] = Field(None, description="Allow voting on several options")
    version: Optional[int] = Field(None, ge=1, description="Version read before editing")

    model_config = ConfigDict(extra="ignore")


class VoteCount(BaseModel):
    votes: int = 0


class PollRead(BaseModel):
    """Schema for a stored poll row."""
    id: str
    title: str
    description: Optional[str] = None
    created_by: str
    is_public: bool = True
    allow_multiple_votes: bool = False
    end_date: Optional[datetime] = None
    version: int = 1
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator('end_date', 'created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v):
        return as_utc(v)

    @computed_field
    @property
    def is_open(self) -> bool:
        """Whether the poll still accepts votes."""
        return self.end_date is None or self.end_date > datetime.now(timezone.utc)


class PollWithOptions(PollRead):
    """
    Poll merged with its ordered options and a vote count.

    Serialize with by_alias=True so the count is emitted as ``_count``.
    """
    options: List[PollOptionRead] = []
    count: VoteCount = Field(default_factory=VoteCount, alias="_count")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PollResults(BaseModel):
    """Schema for poll results."""
    poll_id: str
    title: str
    total_votes: int
    unique_voters: int
    options: List[OptionResult]


class PollAnalyticsRead(BaseModel):
    """Schema for poll analytics counters."""
    poll_id: str
    views: int = 0
    shares: int = 0
    unique_voters: int = 0
    last_updated: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator('last_updated')
    @classmethod
    def normalize_timestamp(cls, v):
        return as_utc(v)
