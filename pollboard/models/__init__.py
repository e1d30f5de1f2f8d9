# Import all models to ensure they are registered with SQLAlchemy
from .poll import Poll
from .option import PollOption
from .vote import Vote
from .analytics import PollAnalytics

# Make models available for import
__all__ = ["Poll", "PollOption", "Vote", "PollAnalytics"]
