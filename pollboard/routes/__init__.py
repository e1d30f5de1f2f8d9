# Routes package
# Contains the API route modules for the PollBoard service

from . import poll_routes

__all__ = [
    "poll_routes",
]
