from contextlib import contextmanager
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import (
    Table, Column, String, Text, BigInteger, Float, DateTime, MetaData,
    delete, func, select, text,
)

from agentskan.domain.exceptions import PersistenceUnavailableException

# SQLAlchemy core Table definitions
metadata = MetaData()
records_table = Table(
    'ledger_records', metadata,
    Column('record_key', String, primary_key=True),
    Column('payload', Text, nullable=False),
    Column('written_at', DateTime(timezone=True), server_default=text('NOW()')),
)
index_table = Table(
    'ledger_index', metadata,
    Column('index_name', String, primary_key=True),
    Column('member', String, primary_key=True),
    Column('score', Float(precision=53), nullable=False, index=True),
)
counters_table = Table(
    'ledger_counters', metadata,
    Column('counter_name', String, primary_key=True),
    Column('total', BigInteger, nullable=False),
)


@contextmanager
def _backend_errors(operation: str):
    try:
        yield
    except (SQLAlchemyError, OSError) as e:
        raise PersistenceUnavailableException(f"Database {operation} failed: {e}") from e


def _rank_window(start: int, stop: int) -> Optional[Tuple[int, Optional[int]]]:
    """
    Converts an inclusive rank range into (offset, limit). A stop of -1 means
    "to the end". Returns None for an empty window.
    """
    if start < 0 or stop < -1:
        raise ValueError("Only non-negative ranks (and -1 as stop) are supported.")
    if stop == -1:
        return start, None
    if stop < start:
        return None
    return start, stop - start + 1


class PostgresLedgerStore:
    """
    LedgerStore on PostgreSQL.
    Records, the sorted index and counters each live in their own table;
    every primitive runs in its own transaction.
    """

    def __init__(self, db_url: str):
        self.engine = create_async_engine(db_url, echo=False)

    async def create_schema(self) -> None:
        with _backend_errors("schema creation"):
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def get(self, key: str) -> Optional[str]:
        stmt = select(records_table.c.payload).where(records_table.c.record_key == key)
        with _backend_errors("get"):
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                return result.scalar_one_or_none()

    async def set(self, key: str, value: str) -> None:
        stmt = insert(records_table).values(record_key=key, payload=value)
        upsert_stmt = stmt.on_conflict_do_update(
            index_elements=['record_key'],
            set_={'payload': stmt.excluded.payload, 'written_at': text('NOW()')},
        )
        with _backend_errors("set"):
            async with self.engine.begin() as conn:
                await conn.execute(upsert_stmt)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        stmt = delete(records_table).where(records_table.c.record_key.in_(keys))
        with _backend_errors("delete"):
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                return result.rowcount

    async def zadd(self, index: str, member: str, score: float) -> None:
        stmt = insert(index_table).values(index_name=index, member=member, score=score)
        upsert_stmt = stmt.on_conflict_do_update(
            index_elements=['index_name', 'member'],
            set_={'score': stmt.excluded.score},
        )
        with _backend_errors("zadd"):
            async with self.engine.begin() as conn:
                await conn.execute(upsert_stmt)

    def _ranked_members(self, index: str, start: int, stop: int, desc: bool = False):
        window = _rank_window(start, stop)
        if window is None:
            return None

        if desc:
            order = (index_table.c.score.desc(), index_table.c.member.desc())
        else:
            order = (index_table.c.score.asc(), index_table.c.member.asc())

        offset, limit = window
        stmt = (
            select(index_table.c.member)
            .where(index_table.c.index_name == index)
            .order_by(*order)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return stmt

    async def zrange(self, index: str, start: int, stop: int, desc: bool = False) -> List[str]:
        stmt = self._ranked_members(index, start, stop, desc=desc)
        if stmt is None:
            return []
        with _backend_errors("zrange"):
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                return list(result.scalars().all())

    async def zremrangebyrank(self, index: str, start: int, stop: int) -> int:
        ranked = self._ranked_members(index, start, stop)
        if ranked is None:
            return 0
        stmt = delete(index_table).where(
            index_table.c.index_name == index,
            index_table.c.member.in_(ranked.correlate(None)),
        )
        with _backend_errors("zremrangebyrank"):
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                return result.rowcount

    async def zcard(self, index: str) -> int:
        stmt = select(func.count()).select_from(index_table).where(index_table.c.index_name == index)
        with _backend_errors("zcard"):
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                return result.scalar_one()

    async def incr(self, key: str) -> int:
        stmt = insert(counters_table).values(counter_name=key, total=1)
        # Concurrent increments serialise on the primary key
        upsert_stmt = stmt.on_conflict_do_update(
            index_elements=['counter_name'],
            set_={'total': counters_table.c.total + 1},
        ).returning(counters_table.c.total)
        with _backend_errors("incr"):
            async with self.engine.begin() as conn:
                result = await conn.execute(upsert_stmt)
                return result.scalar_one()

    async def get_counter(self, key: str) -> int:
        stmt = select(counters_table.c.total).where(counters_table.c.counter_name == key)
        with _backend_errors("get_counter"):
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                value = result.scalar_one_or_none()
        return value or 0
