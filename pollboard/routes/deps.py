from fastapi import Depends, Request
from typing import Optional
import logging

from pollboard.core.security import get_user_id_from_token
from pollboard.repositories.poll import PollRepository
from pollboard.store import PollStore, get_store
from pollboard.utils.logger import SecurityLogger

logger = logging.getLogger(__name__)
security_logger = SecurityLogger()


def get_current_user_id(request: Request) -> Optional[str]:
    """
    Extract the acting user from the Authorization Bearer token.

    A missing or invalid token yields None; endpoints decide whether an
    identity is required.
    """
    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.lower().startswith("bearer "):
        return None

    token = auth_header.split(" ", 1)[1].strip()
    user_id = get_user_id_from_token(token)
    if user_id is None:
        client_host = request.client.host if request.client else None
        security_logger.log_invalid_token(request.url.path, client_host)
    return user_id


def get_poll_repository(store: PollStore = Depends(get_store)) -> PollRepository:
    """Dependency to get a repository bound to the request's store."""
    return PollRepository(store)
