"""
Conditional writes: the only concurrency mechanism the lifecycle engine uses.

An UPDATE carries the expected prior values in its WHERE clause; a row count
of zero means another writer got there first.
"""
from enum import Enum

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession


def plain(value):
    return value.value if isinstance(value, Enum) else value


def matches(column, value):
    return column.is_(None) if value is None else column == plain(value)


async def update_if(db: AsyncSession, model, key, expected: dict, values: dict, *extra_conditions) -> bool:
    """
    Updates the row whose primary lookup column equals `key[1]` (key is a
    `(column, value)` pair) only while every column named in `expected` holds
    its value. Does not commit.
    """
    column, value = key
    stmt = update(model).where(column == value)
    for name, expected_value in expected.items():
        stmt = stmt.where(matches(getattr(model, name), expected_value))
    for condition in extra_conditions:
        stmt = stmt.where(condition)
    stmt = stmt.values(**{k: plain(v) for k, v in values.items()})
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1
