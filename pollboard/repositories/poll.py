from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from pollboard.core.db import utcnow
from pollboard.models.vote import SINGLE_CHOICE_SLOT
from pollboard.schemas.option import OptionResult
from pollboard.schemas.poll import (
    PollAnalyticsRead, PollInput, PollResults, PollWithOptions, VoteCount, as_utc
)
from pollboard.schemas.vote import VoteRead
from pollboard.store.base import POLL_ANALYTICS, POLL_OPTIONS, POLLS, VOTES, PollStore
from pollboard.utils.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    CustomException,
    DuplicateVoteError,
    InvalidOptionError,
    PollClosedError,
    PollNotFoundError,
    StaleVersionError,
    ValidationError,
    VoteNotFoundError,
)

logger = logging.getLogger(__name__)


def parse_end_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 end date.

    Args:
        value: Raw end date string, None or empty

    Returns:
        datetime: Timezone-aware UTC timestamp, or None when no end date was given

    Raises:
        ValidationError: If the string is not a valid timestamp
    """
    if value is None or not value.strip():
        return None

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Invalid end date", field="end_date", details={"value": value})

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_visible(poll: Dict[str, Any], viewer_id: Optional[str]) -> bool:
    """A poll is readable when it is public or the viewer created it."""
    return bool(poll.get("is_public")) or (viewer_id is not None and poll.get("created_by") == viewer_id)


class PollRepository:
    """
    Reads and writes polls, their options and votes through a PollStore.

    Every read returns the same PollWithOptions shape. Multi-step writes run
    inside a single store transaction. Ownership is not checked here; the
    caller decides who may update or delete a poll.
    """

    def __init__(self, store: PollStore):
        self.store = store

    async def _assemble(
        self,
        filters: Optional[Dict[str, Any]] = None,
        viewer_id: Optional[str] = None
    ) -> List[PollWithOptions]:
        polls = await self.store.select(POLLS, filters, order_by="created_at", descending=True)
        polls = [poll for poll in polls if is_visible(poll, viewer_id)]
        if not polls:
            return []

        poll_ids = [poll["id"] for poll in polls]
        options = await self.store.select(POLL_OPTIONS, {"poll_id": poll_ids}, order_by="position")
        votes = await self.store.select(VOTES, {"poll_id": poll_ids})

        options_by_poll: Dict[str, List[Dict[str, Any]]] = {poll_id: [] for poll_id in poll_ids}
        for option in options:
            options_by_poll[option["poll_id"]].append(option)
        vote_counts = Counter(vote["poll_id"] for vote in votes)

        return [
            PollWithOptions.model_validate({
                **poll,
                "options": options_by_poll[poll["id"]],
                "_count": {"votes": vote_counts.get(poll["id"], 0)},
            })
            for poll in polls
        ]

    async def create_poll(self, data: PollInput, user_id: Optional[str]) -> PollWithOptions:
        """
        Create a poll with its options.

        The poll and option rows are written in one transaction. The analytics
        row is created afterwards and a failure there only logs a warning.

        Args:
            data: Validated poll input
            user_id: Creator identity

        Returns:
            PollWithOptions: Created poll with a zero vote count
        """
        if not user_id:
            raise AuthenticationError()

        end_date = parse_end_date(data.end_date)

        async with self.store.transaction():
            poll = (await self.store.insert(POLLS, [{
                "title": data.title,
                "description": data.description,
                "created_by": user_id,
                "is_public": True if data.is_public is None else data.is_public,
                "allow_multiple_votes": bool(data.allow_multiple_votes),
                "end_date": end_date,
            }]))[0]

            options = await self.store.insert(POLL_OPTIONS, [
                {"poll_id": poll["id"], "text": text, "position": index}
                for index, text in enumerate(data.options)
            ])

        await self._create_analytics(poll["id"])

        logger.info(f"Poll created: {poll['title']} (ID: {poll['id']})")
        return PollWithOptions.model_validate({**poll, "options": options, "_count": VoteCount()})

    async def _create_analytics(self, poll_id: str) -> None:
        try:
            await self.store.insert(POLL_ANALYTICS, [{"poll_id": poll_id}])
        except CustomException as e:
            logger.warning(f"Could not create analytics for poll {poll_id}: {e.message}")

    async def get_poll_by_id(self, poll_id: str, viewer_id: Optional[str] = None) -> Optional[PollWithOptions]:
        """Get a poll with options and vote count, or None if missing or not visible."""
        polls = await self._assemble({"id": poll_id}, viewer_id)
        return polls[0] if polls else None

    async def get_all_polls(self, viewer_id: Optional[str] = None) -> List[PollWithOptions]:
        """Get every poll visible to the viewer, newest first."""
        return await self._assemble(None, viewer_id)

    async def get_user_polls(self, user_id: str) -> List[PollWithOptions]:
        """Get polls created by a user, newest first."""
        return await self._assemble({"created_by": user_id}, user_id)

    async def update_poll(
        self,
        poll_id: str,
        data: PollInput,
        expected_version: Optional[int] = None
    ) -> PollWithOptions:
        """
        Update a poll and replace all of its options.

        Existing options are deleted (their votes go with them) and the new
        ones are inserted with fresh positions, all in one transaction.

        Args:
            poll_id: Poll ID
            data: Validated poll input
            expected_version: Version the caller read; defaults to data.version

        Returns:
            PollWithOptions: Updated poll with its new options

        Raises:
            PollNotFoundError: If the poll does not exist
            StaleVersionError: If the poll changed since expected_version was read
        """
        if expected_version is None:
            expected_version = data.version

        end_date = parse_end_date(data.end_date)

        async with self.store.transaction():
            rows = await self.store.select(POLLS, {"id": poll_id})
            if not rows:
                raise PollNotFoundError(poll_id)

            current_version = rows[0]["version"]
            if expected_version is not None and expected_version != current_version:
                raise StaleVersionError(poll_id, expected_version, current_version)

            values: Dict[str, Any] = {"title": data.title, "version": current_version + 1}
            provided = data.model_fields_set
            if "description" in provided:
                values["description"] = data.description
            if "end_date" in provided:
                values["end_date"] = end_date
            if "is_public" in provided and data.is_public is not None:
                values["is_public"] = data.is_public
            if "allow_multiple_votes" in provided and data.allow_multiple_votes is not None:
                values["allow_multiple_votes"] = data.allow_multiple_votes

            # Compare-and-set on the version read above
            updated = await self.store.update(POLLS, {"id": poll_id, "version": current_version}, values)
            if not updated:
                raise StaleVersionError(poll_id, expected_version, None)

            await self.store.delete(POLL_OPTIONS, {"poll_id": poll_id})
            options = await self.store.insert(POLL_OPTIONS, [
                {"poll_id": poll_id, "text": text, "position": index}
                for index, text in enumerate(data.options)
            ])

            vote_total = await self.store.count(VOTES, {"poll_id": poll_id})
            await self._refresh_unique_voters(poll_id)

        logger.info(f"Poll updated: {poll_id} (version {current_version + 1})")
        return PollWithOptions.model_validate({
            **updated[0],
            "options": options,
            "_count": {"votes": vote_total},
        })

    async def delete_poll(self, poll_id: str) -> None:
        """Delete a poll; options, votes and analytics are removed by cascade."""
        removed = await self.store.delete(POLLS, {"id": poll_id})
        if not removed:
            raise PollNotFoundError(poll_id)

        logger.info(f"Poll deleted: {poll_id}")

    async def cast_vote(self, poll_id: str, option_id: str, user_id: Optional[str]) -> VoteRead:
        """
        Record a vote for one option of a poll.

        Args:
            poll_id: Poll ID
            option_id: Option ID
            user_id: Voter identity

        Returns:
            VoteRead: Created vote

        Raises:
            PollNotFoundError: If poll not found
            AuthorizationError: If the poll is private
            PollClosedError: If the poll end date has passed
            InvalidOptionError: If option doesn't belong to poll
            DuplicateVoteError: If the user already voted for this option, or
                for any option of a single-choice poll
        """
        if not user_id:
            raise AuthenticationError()

        async with self.store.transaction():
            polls = await self.store.select(POLLS, {"id": poll_id}, for_update=True)
            if not polls:
                raise PollNotFoundError(poll_id)
            poll = polls[0]

            if not poll["is_public"]:
                raise AuthorizationError("Votes can only be cast on public polls")

            end_date = as_utc(poll["end_date"])
            if end_date is not None and end_date <= utcnow():
                raise PollClosedError(poll_id)

            options = await self.store.select(POLL_OPTIONS, {"id": option_id, "poll_id": poll_id})
            if not options:
                raise InvalidOptionError(option_id, poll_id)

            if poll["allow_multiple_votes"]:
                choice_slot = option_id
            else:
                existing = await self.store.count(VOTES, {"poll_id": poll_id, "user_id": user_id})
                if existing:
                    raise DuplicateVoteError(poll_id)
                # A racing second vote collides with this one on the shared slot
                choice_slot = SINGLE_CHOICE_SLOT

            try:
                vote = (await self.store.insert(VOTES, [{
                    "poll_id": poll_id,
                    "option_id": option_id,
                    "user_id": user_id,
                    "choice_slot": choice_slot,
                }]))[0]
            except ConflictError as e:
                raise DuplicateVoteError(poll_id) from e

            await self._refresh_unique_voters(poll_id)

        logger.info(f"Vote cast on poll {poll_id} for option {option_id}")
        return VoteRead.model_validate(vote)

    async def remove_vote(self, vote_id: str, user_id: Optional[str], poll_id: Optional[str] = None) -> None:
        """Remove a vote. Only the user who cast it may remove it."""
        if not user_id:
            raise AuthenticationError()

        async with self.store.transaction():
            votes = await self.store.select(VOTES, {"id": vote_id})
            if not votes or (poll_id is not None and votes[0]["poll_id"] != poll_id):
                raise VoteNotFoundError(vote_id)

            vote = votes[0]
            if vote["user_id"] != user_id:
                raise AuthorizationError("You can only remove your own vote")

            await self.store.delete(VOTES, {"id": vote_id})
            await self._refresh_unique_voters(vote["poll_id"])

        logger.info(f"Vote removed: {vote_id}")

    async def _refresh_unique_voters(self, poll_id: str) -> int:
        voters = await self.store.count(VOTES, {"poll_id": poll_id}, distinct="user_id")
        updated = await self.store.update(POLL_ANALYTICS, {"poll_id": poll_id}, {"unique_voters": voters})
        if not updated:
            await self.store.insert(POLL_ANALYTICS, [{"poll_id": poll_id, "unique_voters": voters}])
        return voters

    async def get_poll_results(self, poll_id: str, viewer_id: Optional[str] = None) -> PollResults:
        """
        Get per-option tallies for a poll.

        Percentages are rounded to two decimals and are 0 when nobody voted.
        """
        poll = await self.get_poll_by_id(poll_id, viewer_id)
        if poll is None:
            raise PollNotFoundError(poll_id)

        votes = await self.store.select(VOTES, {"poll_id": poll_id})
        tally = Counter(vote["option_id"] for vote in votes)
        total = len(votes)

        options = [
            OptionResult(
                id=option.id,
                text=option.text,
                position=option.position,
                votes=tally.get(option.id, 0),
                percentage=round(tally.get(option.id, 0) / total * 100, 2) if total else 0.0,
            )
            for option in poll.options
        ]

        return PollResults(
            poll_id=poll.id,
            title=poll.title,
            total_votes=total,
            unique_voters=len({vote["user_id"] for vote in votes}),
            options=options,
        )

    async def _bump_counter(self, poll_id: str, column: str) -> PollAnalyticsRead:
        rows = await self.store.increment(POLL_ANALYTICS, {"poll_id": poll_id}, column)
        if not rows:
            if not await self.store.count(POLLS, {"id": poll_id}):
                raise PollNotFoundError(poll_id)
            try:
                rows = await self.store.insert(POLL_ANALYTICS, [{"poll_id": poll_id, column: 1}])
            except ConflictError:
                # Another request created the row first
                rows = await self.store.increment(POLL_ANALYTICS, {"poll_id": poll_id}, column)

        return PollAnalyticsRead.model_validate(rows[0])

    async def record_view(self, poll_id: str) -> PollAnalyticsRead:
        """Increment the view counter of a poll."""
        return await self._bump_counter(poll_id, "views")

    async def record_share(self, poll_id: str) -> PollAnalyticsRead:
        """Increment the share counter of a poll."""
        return await self._bump_counter(poll_id, "shares")

    async def get_poll_analytics(self, poll_id: str) -> Optional[PollAnalyticsRead]:
        """Get the analytics counters of a poll."""
        rows = await self.store.select(POLL_ANALYTICS, {"poll_id": poll_id})
        if not rows:
            return None
        return PollAnalyticsRead.model_validate(rows[0])
