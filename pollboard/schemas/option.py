from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


class PollOptionRead(BaseModel):
    """Schema for an option as returned inside a poll."""
    id: str
    poll_id: str
    text: str = Field(..., max_length=100, description="Option text")
    position: int = Field(0, ge=0, description="Display order within the poll")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OptionResult(BaseModel):
    """Tally for one option."""
    id: str
    text: str
    position: int
    votes: int = 0
    percentage: float = 0.0
