from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol

POLLS = "polls"
POLL_OPTIONS = "poll_options"
VOTES = "votes"
POLL_ANALYTICS = "poll_analytics"

TABLES = (POLLS, POLL_OPTIONS, VOTES, POLL_ANALYTICS)

Row = Dict[str, Any]
Filters = Dict[str, Any]


class PollStore(Protocol):
    """
    Persistence operations the poll repository relies on.

    Filters are column equality checks; a list, tuple or set value matches
    any of its members. Every method may raise a CustomException translated
    from the backend (ConflictError for uniqueness, StoreError otherwise).
    """

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        """Insert rows and return them with defaults filled in."""
        ...

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        for_update: bool = False
    ) -> List[Row]:
        """
        Return matching rows. With for_update the rows stay locked against
        other writers until the surrounding transaction ends, where the
        backend supports row locks.
        """
        ...

    async def update(self, table: str, filters: Filters, values: Row) -> List[Row]:
        """Apply values to matching rows and return them after the change."""
        ...

    async def increment(self, table: str, filters: Filters, column: str, amount: int = 1) -> List[Row]:
        """Add amount to a numeric column in one statement and return the changed rows."""
        ...

    async def delete(self, table: str, filters: Filters) -> int:
        """Delete matching rows; dependent rows are removed by cascade."""
        ...

    async def count(
        self,
        table: str,
        filters: Optional[Filters] = None,
        distinct: Optional[str] = None
    ) -> int:
        ...

    def transaction(self) -> AsyncContextManager[Any]:
        """Group the calls made inside the block into one all-or-nothing unit."""
        ...


def is_multi_value(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))
