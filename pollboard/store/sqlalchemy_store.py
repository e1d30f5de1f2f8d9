from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Type
import logging

from sqlalchemy import delete, distinct as sql_distinct, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pollboard.core.db import Base
from pollboard.models import Poll, PollAnalytics, PollOption, Vote
from pollboard.store.base import (
    POLL_ANALYTICS, POLL_OPTIONS, POLLS, VOTES, Filters, Row, is_multi_value
)
from pollboard.utils.exceptions import handle_database_error
from pollboard.utils.logger import StoreLogger

logger = logging.getLogger(__name__)

MODELS: Dict[str, Type[Base]] = {
    POLLS: Poll,
    POLL_OPTIONS: PollOption,
    VOTES: Vote,
    POLL_ANALYTICS: PollAnalytics,
}


class SQLAlchemyPollStore:
    """
    PollStore backed by an AsyncSession.

    Outside of transaction() every call commits on its own. Inside it the
    calls share the session transaction and are committed or rolled back
    together when the block exits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._in_transaction = False
        self.store_logger = StoreLogger("sqlalchemy")

    def _model(self, table: str) -> Type[Base]:
        try:
            return MODELS[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}")

    def _conditions(self, model: Type[Base], filters: Optional[Filters]) -> list:
        conditions = []
        for column, value in (filters or {}).items():
            attribute = getattr(model, column)
            if is_multi_value(value):
                conditions.append(attribute.in_(list(value)))
            elif value is None:
                conditions.append(attribute.is_(None))
            else:
                conditions.append(attribute == value)
        return conditions

    @asynccontextmanager
    async def _guard(self, operation: str, table: str) -> AsyncIterator[None]:
        try:
            yield
            if not self._in_transaction:
                await self.session.commit()
        except SQLAlchemyError as e:
            if not self._in_transaction:
                await self.session.rollback()
            self.store_logger.log_error(str(e), operation=operation, table=table)
            raise handle_database_error(e) from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SQLAlchemyPollStore"]:
        if self._in_transaction:
            yield self
            return

        self._in_transaction = True
        try:
            yield self
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.store_logger.log_error(str(e), operation="commit")
            raise handle_database_error(e) from e
        except Exception:
            await self.session.rollback()
            raise
        finally:
            self._in_transaction = False

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        model = self._model(table)
        async with self._guard("insert", table):
            instances = [model(**row) for row in rows]
            self.session.add_all(instances)
            await self.session.flush()
            inserted = [instance.to_dict() for instance in instances]
        return inserted

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        for_update: bool = False
    ) -> List[Row]:
        model = self._model(table)
        statement = (
            select(model)
            .where(*self._conditions(model, filters))
            .execution_options(populate_existing=True)
        )
        if order_by:
            column = getattr(model, order_by)
            statement = statement.order_by(column.desc() if descending else column.asc())
        if for_update:
            # Rendered as FOR UPDATE where the dialect supports it; SQLite omits it
            statement = statement.with_for_update()

        async with self._guard("select", table):
            result = await self.session.execute(statement)
            rows = [instance.to_dict() for instance in result.scalars().all()]
        return rows

    async def _returning_rows(self, model: Type[Base], statement, operation: str, table: str) -> List[Row]:
        async with self._guard(operation, table):
            result = await self.session.execute(statement)
            ids = list(result.scalars().all())
            rows: List[Row] = []
            if ids:
                refreshed = await self.session.execute(
                    select(model)
                    .where(model.id.in_(ids))
                    .execution_options(populate_existing=True)
                )
                rows = [instance.to_dict() for instance in refreshed.scalars().all()]
        return rows

    async def update(self, table: str, filters: Filters, values: Row) -> List[Row]:
        model = self._model(table)
        statement = (
            update(model)
            .where(*self._conditions(model, filters))
            .values(**values)
            .returning(model.id)
        )
        return await self._returning_rows(model, statement, "update", table)

    async def increment(self, table: str, filters: Filters, column: str, amount: int = 1) -> List[Row]:
        model = self._model(table)
        attribute = getattr(model, column)
        # SET column = column + amount, evaluated by the database
        statement = (
            update(model)
            .where(*self._conditions(model, filters))
            .values({attribute: attribute + amount})
            .returning(model.id)
            .execution_options(synchronize_session=False)
        )
        return await self._returning_rows(model, statement, "increment", table)

    async def delete(self, table: str, filters: Filters) -> int:
        model = self._model(table)
        statement = delete(model).where(*self._conditions(model, filters))

        async with self._guard("delete", table):
            result = await self.session.execute(statement)
            removed = result.rowcount or 0
        return removed

    async def count(
        self,
        table: str,
        filters: Optional[Filters] = None,
        distinct: Optional[str] = None
    ) -> int:
        model = self._model(table)
        if distinct:
            counted = func.count(sql_distinct(getattr(model, distinct)))
        else:
            counted = func.count()
        statement = select(counted).select_from(model).where(*self._conditions(model, filters))

        async with self._guard("count", table):
            result = await self.session.execute(statement)
            total = result.scalar_one()
        return int(total or 0)
