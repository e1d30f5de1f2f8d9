from fastapi import APIRouter, Body, Depends, Path
from pydantic import ValidationError as PydanticValidationError
from typing import Any, Optional
import logging

from pollboard.repositories.poll import PollRepository
from pollboard.routes.deps import get_current_user_id, get_poll_repository, security_logger
from pollboard.schemas.poll import PollWithOptions
from pollboard.schemas.vote import VoteCreate
from pollboard.utils.exceptions import (
    AuthorizationError,
    CustomException,
    PollNotFoundError,
    ValidationError,
)
from pollboard.utils.response_helper import (
    deleted_response,
    not_found_response,
    exception_response,
    internal_error_response,
    success_response,
    unauthorized_response,
)
from pollboard.validation import validate_poll_input

logger = logging.getLogger(__name__)

router = APIRouter()


async def load_owned_poll(
    repository: PollRepository,
    poll_id: str,
    user_id: str,
    action: str
) -> PollWithOptions:
    """
    Load a poll the acting user is about to change.

    Raises:
        PollNotFoundError: If the poll does not exist or is not visible
        AuthorizationError: If the user did not create the poll
    """
    poll = await repository.get_poll_by_id(poll_id, user_id)
    if poll is None:
        raise PollNotFoundError(poll_id)

    if poll.created_by != user_id:
        security_logger.log_forbidden(action, poll_id, user_id)
        raise AuthorizationError(f"You can only {action} your own polls")
    return poll


@router.post("", response_model=dict)
async def create_poll(
    payload: Any = Body(None),
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Create a new poll."""
    try:
        if not user_id:
            return unauthorized_response(message="Authentication required to create polls")

        data = validate_poll_input(payload).raise_for_errors()
        poll = await repository.create_poll(data, user_id)

        return success_response(
            data=poll.to_response(),
            message="Poll created successfully"
        )

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error creating poll: {e}", exc_info=True)
        return internal_error_response(message="Failed to create poll")


@router.get("", response_model=dict)
async def get_polls(
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Get every poll visible to the caller, newest first."""
    try:
        polls = await repository.get_all_polls(user_id)

        return success_response(
            data=[poll.to_response() for poll in polls],
            message="Polls retrieved successfully"
        )

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error getting polls: {e}", exc_info=True)
        return internal_error_response(message="Failed to retrieve polls")


@router.get("/mine", response_model=dict)
async def get_my_polls(
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Get polls created by the caller."""
    try:
        if not user_id:
            return unauthorized_response()

        polls = await repository.get_user_polls(user_id)

        return success_response(
            data=[poll.to_response() for poll in polls],
            message="User polls retrieved successfully"
        )

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error getting user polls: {e}", exc_info=True)
        return internal_error_response(message="Failed to retrieve polls")


@router.get("/{poll_id}", response_model=dict)
async def get_poll(
    poll_id: str = Path(..., description="Poll ID"),
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Get a poll with its options and vote count."""
    try:
        poll = await repository.get_poll_by_id(poll_id, user_id)
        if poll is None:
            raise PollNotFoundError(poll_id)

        # A failed view counter must not hide the poll
        try:
            await repository.record_view(poll_id)
        except CustomException as e:
            logger.warning(f"Could not record view for poll {poll_id}: {e.message}")

        return success_response(
            data=poll.to_response(),
            message="Poll retrieved successfully"
        )

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error getting poll {poll_id}: {e}", exc_info=True)
        return internal_error_response(message="Failed to retrieve poll")


@router.put("/{poll_id}", response_model=dict)
async def update_poll(
    poll_id: str = Path(..., description="Poll ID"),
    payload: Any = Body(None),
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Update a poll and replace its options. Only the creator may do this."""
    try:
        if not user_id:
            return unauthorized_response(message="Authentication required to update polls")

        await load_owned_poll(repository, poll_id, user_id, "update")

        data = validate_poll_input(payload).raise_for_errors()
        poll = await repository.update_poll(poll_id, data)

        return success_response(
            data=poll.to_response(),
            message="Poll updated successfully"
        )

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error updating poll {poll_id}: {e}", exc_info=True)
        return internal_error_response(message="Failed to update poll")


@router.delete("/{poll_id}", response_model=dict)
async def delete_poll(
    poll_id: str = Path(..., description="Poll ID"),
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Delete a poll. Only the creator may do this."""
    try:
        if not user_id:
            return unauthorized_response(message="Authentication required to delete polls")

        await load_owned_poll(repository, poll_id, user_id, "delete")
        await repository.delete_poll(poll_id)

        return deleted_response(message="Poll deleted successfully")

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error deleting poll {poll_id}: {e}", exc_info=True)
        return internal_error_response(message="Failed to delete poll")


@router.get("/{poll_id}/results", response_model=dict)
async def get_poll_results(
    poll_id: str = Path(..., description="Poll ID"),
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Get per-option tallies and percentages."""
    try:
        results = await repository.get_poll_results(poll_id, user_id)

        return success_response(
            data=results.model_dump(mode="json"),
            message="Poll results retrieved successfully"
        )

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error getting results for poll {poll_id}: {e}", exc_info=True)
        return internal_error_response(message="Failed to retrieve poll results")


@router.post("/{poll_id}/votes", response_model=dict)
async def cast_vote(
    poll_id: str = Path(..., description="Poll ID"),
    payload: Any = Body(None),
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Vote for one option of a poll."""
    try:
        if not user_id:
            return unauthorized_response(message="Authentication required to vote")

        try:
            vote_data = VoteCreate.model_validate(payload)
        except PydanticValidationError:
            raise ValidationError("Option ID is required", field="option_id")

        vote = await repository.cast_vote(poll_id, vote_data.option_id, user_id)

        return success_response(
            data=vote.model_dump(mode="json"),
            message="Vote recorded successfully"
        )

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error voting on poll {poll_id}: {e}", exc_info=True)
        return internal_error_response(message="Failed to record vote")


@router.delete("/{poll_id}/votes/{vote_id}", response_model=dict)
async def remove_vote(
    poll_id: str = Path(..., description="Poll ID"),
    vote_id: str = Path(..., description="Vote ID"),
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Remove the caller's own vote."""
    try:
        if not user_id:
            return unauthorized_response(message="Authentication required to remove a vote")

        await repository.remove_vote(vote_id, user_id, poll_id=poll_id)

        return deleted_response(message="Vote removed successfully")

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error removing vote {vote_id}: {e}", exc_info=True)
        return internal_error_response(message="Failed to remove vote")


@router.post("/{poll_id}/share", response_model=dict)
async def share_poll(
    poll_id: str = Path(..., description="Poll ID"),
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Count a share of a poll."""
    try:
        poll = await repository.get_poll_by_id(poll_id, user_id)
        if poll is None:
            raise PollNotFoundError(poll_id)

        analytics = await repository.record_share(poll_id)

        return success_response(
            data={"poll_id": poll_id, "shares": analytics.shares},
            message="Share recorded successfully"
        )

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error sharing poll {poll_id}: {e}", exc_info=True)
        return internal_error_response(message="Failed to record share")


@router.get("/{poll_id}/analytics", response_model=dict)
async def get_poll_analytics(
    poll_id: str = Path(..., description="Poll ID"),
    user_id: Optional[str] = Depends(get_current_user_id),
    repository: PollRepository = Depends(get_poll_repository)
):
    """Get view, share and voter counters. Only the creator may read them."""
    try:
        if not user_id:
            return unauthorized_response()

        await load_owned_poll(repository, poll_id, user_id, "view analytics of")

        analytics = await repository.get_poll_analytics(poll_id)
        if analytics is None:
            return not_found_response(resource="Poll analytics", identifier=poll_id)

        return success_response(
            data=analytics.model_dump(mode="json"),
            message="Poll analytics retrieved successfully"
        )

    except CustomException as e:
        return exception_response(e)
    except Exception as e:
        logger.error(f"Error getting analytics for poll {poll_id}: {e}", exc_info=True)
        return internal_error_response(message="Failed to retrieve analytics")
