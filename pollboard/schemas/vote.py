from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime


class VoteCreate(BaseModel):
    """Schema for casting a vote."""
    option_id: str = Field(..., min_length=1, description="Option ID to vote for")

    @field_validator('option_id')
    @classmethod
    def validate_option_id(cls, v):
        """Validate option ID."""
        if not v.strip():
            raise ValueError('Option ID is required')
        return v.strip()


class VoteRead(BaseModel):
    """Schema for vote response."""
    id: str
    poll_id: str
    option_id: str
    user_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
