import asyncio
import pytest

from pollboard.models.vote import SINGLE_CHOICE_SLOT
from pollboard.repositories.poll import PollRepository
from pollboard.schemas.vote import VoteRead
from pollboard.store.base import POLL_ANALYTICS, POLL_OPTIONS, POLLS, VOTES
from pollboard.store.memory import InMemoryPollStore
from pollboard.store.sqlalchemy_store import SQLAlchemyPollStore
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
    StoreError,
    ValidationError,
    VoteNotFoundError,
)

from conftest import future_date, past_date, poll_input

OWNER = "user-owner"
ALICE = "user-alice"
BOB = "user-bob"


def option_ids(poll):
    return [option.id for option in poll.options]


class TestCreateAndRead:
    """Test cases for creating and reading polls."""

    @pytest.mark.asyncio
    async def test_create_then_get_round_trip(self, repository):
        data = poll_input(options=["Red", "Green", "Blue"], end_date="2030-01-01T00:00:00Z")
        created = await repository.create_poll(data, OWNER)

        poll = await repository.get_poll_by_id(created.id)
        assert poll is not None
        assert poll.title == data.title
        assert poll.created_by == OWNER
        assert [option.text for option in poll.options] == ["Red", "Green", "Blue"]
        assert [option.position for option in poll.options] == [0, 1, 2]
        assert poll.end_date.isoformat() == "2030-01-01T00:00:00+00:00"
        assert poll.count.votes == 0
        assert poll.version == 1
        assert poll.is_public is True
        assert poll.allow_multiple_votes is False

    @pytest.mark.asyncio
    async def test_create_returns_options_and_zero_count(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        assert len(created.options) == 3
        assert created.to_response()["_count"] == {"votes": 0}

    @pytest.mark.asyncio
    async def test_create_requires_identity(self, repository, store):
        with pytest.raises(AuthenticationError):
            await repository.create_poll(poll_input(), None)
        assert await store.count(POLLS) == 0

    @pytest.mark.asyncio
    async def test_create_initialises_analytics(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        analytics = await repository.get_poll_analytics(created.id)
        assert analytics is not None
        assert (analytics.views, analytics.shares, analytics.unique_voters) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_create_rejects_bad_end_date(self, repository, store):
        with pytest.raises(ValidationError):
            await repository.create_poll(poll_input(end_date="soon"), OWNER)
        assert await store.count(POLLS) == 0

    @pytest.mark.asyncio
    async def test_get_missing_poll_returns_none(self, repository):
        assert await repository.get_poll_by_id("does-not-exist") is None

    @pytest.mark.asyncio
    async def test_get_all_polls_empty(self, repository):
        assert await repository.get_all_polls() == []

    @pytest.mark.asyncio
    async def test_lists_are_newest_first(self, repository):
        first = await repository.create_poll(poll_input(title="Poll number one"), OWNER)
        second = await repository.create_poll(poll_input(title="Poll number two"), OWNER)
        third = await repository.create_poll(poll_input(title="Poll number three"), OWNER)
        await repository.create_poll(poll_input(title="Someone else's poll"), ALICE)

        all_polls = await repository.get_all_polls()
        assert [poll.id for poll in all_polls][1:] == [third.id, second.id, first.id]

        user_polls = await repository.get_user_polls(OWNER)
        assert [poll.id for poll in user_polls] == [third.id, second.id, first.id]

    @pytest.mark.asyncio
    async def test_private_poll_visibility(self, repository):
        private = await repository.create_poll(poll_input(is_public=False), OWNER)

        assert await repository.get_poll_by_id(private.id) is None
        assert await repository.get_poll_by_id(private.id, ALICE) is None
        assert (await repository.get_poll_by_id(private.id, OWNER)).id == private.id

        assert await repository.get_all_polls() == []
        assert [poll.id for poll in await repository.get_all_polls(OWNER)] == [private.id]
        assert [poll.id for poll in await repository.get_user_polls(OWNER)] == [private.id]


class TestAtomicWrites:
    """Test cases for all-or-nothing poll writes."""

    @pytest.mark.asyncio
    async def test_option_failure_leaves_no_orphan_poll(self, repository, store, monkeypatch):
        original_insert = store.insert

        async def failing_insert(table, rows):
            if table == POLL_OPTIONS:
                raise StoreError()
            return await original_insert(table, rows)

        monkeypatch.setattr(store, "insert", failing_insert)

        with pytest.raises(StoreError):
            await repository.create_poll(poll_input(), OWNER)

        assert await store.select(POLLS) == []
        assert await store.select(POLL_OPTIONS) == []

    @pytest.mark.asyncio
    async def test_analytics_failure_does_not_fail_create(self, repository, store, monkeypatch):
        original_insert = store.insert

        async def failing_insert(table, rows):
            if table == POLL_ANALYTICS:
                raise StoreError()
            return await original_insert(table, rows)

        monkeypatch.setattr(store, "insert", failing_insert)

        created = await repository.create_poll(poll_input(), OWNER)
        assert await repository.get_poll_by_id(created.id) is not None
        assert await repository.get_poll_analytics(created.id) is None

    @pytest.mark.asyncio
    async def test_update_failure_keeps_previous_state(self, repository, store, monkeypatch):
        created = await repository.create_poll(poll_input(title="Original title"), OWNER)
        original_insert = store.insert

        async def failing_insert(table, rows):
            if table == POLL_OPTIONS:
                raise StoreError()
            return await original_insert(table, rows)

        monkeypatch.setattr(store, "insert", failing_insert)

        with pytest.raises(StoreError):
            await repository.update_poll(created.id, poll_input(title="Changed title", options=["A", "B"]))

        monkeypatch.undo()
        poll = await repository.get_poll_by_id(created.id)
        assert poll.title == "Original title"
        assert option_ids(poll) == option_ids(created)
        assert poll.version == 1


class TestUpdateAndDelete:
    """Test cases for updating and deleting polls."""

    @pytest.mark.asyncio
    async def test_update_replaces_options(self, repository, store):
        created = await repository.create_poll(poll_input(options=["One", "Two", "Three"]), OWNER)

        updated = await repository.update_poll(created.id, poll_input(title="Updated question", options=["A", "B"]))
        assert updated.title == "Updated question"
        assert updated.version == 2

        poll = await repository.get_poll_by_id(created.id)
        assert [(option.text, option.position) for option in poll.options] == [("A", 0), ("B", 1)]
        assert not set(option_ids(poll)) & set(option_ids(created))
        assert await store.count(POLL_OPTIONS, {"poll_id": created.id}) == 2

    @pytest.mark.asyncio
    async def test_update_keeps_unspecified_fields(self, repository):
        created = await repository.create_poll(
            poll_input(description="Some context", end_date=future_date()), OWNER
        )
        updated = await repository.update_poll(created.id, poll_input(title="Updated question"))
        assert updated.description == "Some context"
        assert updated.end_date == created.end_date

    @pytest.mark.asyncio
    async def test_update_can_clear_end_date(self, repository):
        created = await repository.create_poll(poll_input(end_date=future_date()), OWNER)
        updated = await repository.update_poll(created.id, poll_input(end_date=None))
        assert updated.end_date is None

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        await repository.update_poll(created.id, poll_input(title="First editor wins"), expected_version=1)

        with pytest.raises(StaleVersionError) as exc_info:
            await repository.update_poll(
                created.id, poll_input(title="Second editor loses", options=["X", "Y"]), expected_version=1
            )
        assert exc_info.value.status_code == 409
        assert exc_info.value.details["current_version"] == 2

        poll = await repository.get_poll_by_id(created.id)
        assert poll.title == "First editor wins"
        assert [option.text for option in poll.options] == ["Python", "Go", "Rust"]

    @pytest.mark.asyncio
    async def test_version_taken_from_input(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        with pytest.raises(StaleVersionError):
            await repository.update_poll(created.id, poll_input(version=5))

    @pytest.mark.asyncio
    async def test_update_missing_poll(self, repository):
        with pytest.raises(PollNotFoundError):
            await repository.update_poll("does-not-exist", poll_input())

    @pytest.mark.asyncio
    async def test_delete_cascades(self, repository, store):
        created = await repository.create_poll(poll_input(), OWNER)
        await repository.cast_vote(created.id, created.options[0].id, ALICE)

        await repository.delete_poll(created.id)

        assert await repository.get_poll_by_id(created.id) is None
        assert await store.select(POLL_OPTIONS, {"poll_id": created.id}) == []
        assert await store.select(VOTES, {"poll_id": created.id}) == []
        assert await store.select(POLL_ANALYTICS, {"poll_id": created.id}) == []

    @pytest.mark.asyncio
    async def test_delete_missing_poll(self, repository):
        with pytest.raises(PollNotFoundError):
            await repository.delete_poll("does-not-exist")


class TestVoting:
    """Test cases for votes and results."""

    @pytest.mark.asyncio
    async def test_vote_count_aggregation(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        for index, voter in enumerate(["u1", "u2", "u3", "u4"]):
            await repository.cast_vote(created.id, created.options[index % 3].id, voter)

        poll = await repository.get_poll_by_id(created.id)
        assert poll.count.votes == 4

    @pytest.mark.asyncio
    async def test_unique_voters_recomputed(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        await repository.cast_vote(created.id, created.options[0].id, ALICE)
        await repository.cast_vote(created.id, created.options[1].id, BOB)

        analytics = await repository.get_poll_analytics(created.id)
        assert analytics.unique_voters == 2

    @pytest.mark.asyncio
    async def test_duplicate_vote_same_option(self, repository):
        created = await repository.create_poll(poll_input(allow_multiple_votes=True), OWNER)
        await repository.cast_vote(created.id, created.options[0].id, ALICE)

        with pytest.raises(DuplicateVoteError):
            await repository.cast_vote(created.id, created.options[0].id, ALICE)

    @pytest.mark.asyncio
    async def test_single_choice_poll_rejects_second_option(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        await repository.cast_vote(created.id, created.options[0].id, ALICE)

        with pytest.raises(DuplicateVoteError):
            await repository.cast_vote(created.id, created.options[1].id, ALICE)

        poll = await repository.get_poll_by_id(created.id)
        assert poll.count.votes == 1

    @pytest.mark.asyncio
    async def test_multiple_choice_poll_allows_second_option(self, repository):
        created = await repository.create_poll(poll_input(allow_multiple_votes=True), OWNER)
        await repository.cast_vote(created.id, created.options[0].id, ALICE)
        await repository.cast_vote(created.id, created.options[1].id, ALICE)

        poll = await repository.get_poll_by_id(created.id)
        assert poll.count.votes == 2
        analytics = await repository.get_poll_analytics(created.id)
        assert analytics.unique_voters == 1

    @pytest.mark.asyncio
    async def test_vote_on_closed_poll(self, repository):
        created = await repository.create_poll(poll_input(end_date=past_date()), OWNER)
        with pytest.raises(PollClosedError):
            await repository.cast_vote(created.id, created.options[0].id, ALICE)

    @pytest.mark.asyncio
    async def test_vote_on_open_poll_with_end_date(self, repository):
        created = await repository.create_poll(poll_input(end_date=future_date()), OWNER)
        vote = await repository.cast_vote(created.id, created.options[0].id, ALICE)
        assert vote.user_id == ALICE

    @pytest.mark.asyncio
    async def test_vote_on_private_poll(self, repository):
        created = await repository.create_poll(poll_input(is_public=False), OWNER)
        with pytest.raises(AuthorizationError):
            await repository.cast_vote(created.id, created.options[0].id, OWNER)

    @pytest.mark.asyncio
    async def test_vote_with_foreign_option(self, repository):
        first = await repository.create_poll(poll_input(), OWNER)
        second = await repository.create_poll(poll_input(), OWNER)
        with pytest.raises(InvalidOptionError):
            await repository.cast_vote(first.id, second.options[0].id, ALICE)

    @pytest.mark.asyncio
    async def test_vote_on_missing_poll(self, repository):
        with pytest.raises(PollNotFoundError):
            await repository.cast_vote("does-not-exist", "nope", ALICE)

    @pytest.mark.asyncio
    async def test_results_percentages(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        await repository.cast_vote(created.id, created.options[0].id, "u1")
        await repository.cast_vote(created.id, created.options[0].id, "u2")
        await repository.cast_vote(created.id, created.options[1].id, "u3")

        results = await repository.get_poll_results(created.id)
        assert results.total_votes == 3
        assert results.unique_voters == 3
        assert [option.votes for option in results.options] == [2, 1, 0]
        assert [option.percentage for option in results.options] == [66.67, 33.33, 0.0]

    @pytest.mark.asyncio
    async def test_results_without_votes(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        results = await repository.get_poll_results(created.id)
        assert results.total_votes == 0
        assert all(option.percentage == 0.0 for option in results.options)

    @pytest.mark.asyncio
    async def test_remove_vote(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        vote = await repository.cast_vote(created.id, created.options[0].id, ALICE)

        with pytest.raises(AuthorizationError):
            await repository.remove_vote(vote.id, BOB)

        await repository.remove_vote(vote.id, ALICE)

        poll = await repository.get_poll_by_id(created.id)
        assert poll.count.votes == 0
        analytics = await repository.get_poll_analytics(created.id)
        assert analytics.unique_voters == 0

        with pytest.raises(VoteNotFoundError):
            await repository.remove_vote(vote.id, ALICE)

    @pytest.mark.asyncio
    async def test_update_drops_votes_of_replaced_options(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        await repository.cast_vote(created.id, created.options[0].id, ALICE)

        updated = await repository.update_poll(created.id, poll_input(options=["New A", "New B"]))
        assert updated.count.votes == 0
        analytics = await repository.get_poll_analytics(created.id)
        assert analytics.unique_voters == 0


class TestCounters:
    """Test cases for view and share counters."""

    @pytest.mark.asyncio
    async def test_record_view_and_share(self, repository):
        created = await repository.create_poll(poll_input(), OWNER)
        await repository.record_view(created.id)
        await repository.record_view(created.id)
        analytics = await repository.record_share(created.id)

        assert analytics.views == 2
        assert analytics.shares == 1

    @pytest.mark.asyncio
    async def test_counter_on_missing_poll(self, repository):
        with pytest.raises(PollNotFoundError):
            await repository.record_view("does-not-exist")

    @pytest.mark.asyncio
    async def test_counter_creates_missing_analytics_row(self, repository, store, monkeypatch):
        original_insert = store.insert

        async def failing_insert(table, rows):
            if table == POLL_ANALYTICS:
                raise StoreError()
            return await original_insert(table, rows)

        monkeypatch.setattr(store, "insert", failing_insert)
        created = await repository.create_poll(poll_input(), OWNER)
        monkeypatch.undo()

        analytics = await repository.record_share(created.id)
        assert analytics.shares == 1
        assert analytics.views == 0


class TestConcurrentWrites:
    """Test cases for writes racing on separate sessions."""

    @staticmethod
    async def create_poll(session_factory, **extra):
        async with session_factory() as session:
            return await PollRepository(SQLAlchemyPollStore(session)).create_poll(poll_input(**extra), OWNER)

    @pytest.mark.asyncio
    async def test_store_rejects_second_single_choice_vote(self, repository, store):
        """The single-choice rule holds even without the repository check."""
        created = await repository.create_poll(poll_input(), OWNER)
        first, second, _ = option_ids(created)
        await repository.cast_vote(created.id, first, ALICE)

        with pytest.raises(ConflictError):
            await store.insert(VOTES, [{
                "poll_id": created.id,
                "option_id": second,
                "user_id": ALICE,
                "choice_slot": SINGLE_CHOICE_SLOT,
            }])

        assert await store.count(VOTES, {"poll_id": created.id}) == 1

    @pytest.mark.asyncio
    async def test_concurrent_single_choice_votes_keep_one(self, session_factory):
        created = await self.create_poll(session_factory)
        first, second, _ = option_ids(created)

        async def vote_in_own_session(option_id):
            async with session_factory() as session:
                repository = PollRepository(SQLAlchemyPollStore(session))
                return await repository.cast_vote(created.id, option_id, ALICE)

        results = await asyncio.gather(
            vote_in_own_session(first),
            vote_in_own_session(second),
            return_exceptions=True
        )

        assert len([result for result in results if isinstance(result, VoteRead)]) == 1
        assert all(
            isinstance(result, (VoteRead, CustomException)) for result in results
        ), results

        async with session_factory() as session:
            assert await SQLAlchemyPollStore(session).count(VOTES, {"poll_id": created.id}) == 1

    @pytest.mark.asyncio
    async def test_concurrent_multiple_choice_votes_all_kept(self, session_factory):
        created = await self.create_poll(session_factory, allow_multiple_votes=True)

        async def vote_in_own_session(option_id):
            async with session_factory() as session:
                repository = PollRepository(SQLAlchemyPollStore(session))
                return await repository.cast_vote(created.id, option_id, ALICE)

        results = await asyncio.gather(*(vote_in_own_session(option_id) for option_id in option_ids(created)))

        assert all(isinstance(result, VoteRead) for result in results)
        async with session_factory() as session:
            assert await SQLAlchemyPollStore(session).count(VOTES, {"poll_id": created.id}) == 3

    @pytest.mark.asyncio
    async def test_concurrent_views_are_all_counted(self, session_factory):
        created = await self.create_poll(session_factory)

        async def view_in_own_session():
            async with session_factory() as session:
                return await PollRepository(SQLAlchemyPollStore(session)).record_view(created.id)

        await asyncio.gather(*(view_in_own_session() for _ in range(5)))

        async with session_factory() as session:
            analytics = await PollRepository(SQLAlchemyPollStore(session)).get_poll_analytics(created.id)
        assert analytics.views == 5

    @pytest.mark.asyncio
    async def test_concurrent_views_on_memory_store(self):
        repository = PollRepository(InMemoryPollStore())
        created = await repository.create_poll(poll_input(), OWNER)

        await asyncio.gather(*(repository.record_view(created.id) for _ in range(5)))

        analytics = await repository.get_poll_analytics(created.id)
        assert analytics.views == 5
