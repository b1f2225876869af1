"""Single-row conditional updates used for every billing status transition."""
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession


async def apply_transition(db: AsyncSession, model: Any, record_id: UUID, *conditions: Any, **values: Any) -> bool:
    """
    Atomically update one row if it still satisfies the given conditions.

    The status guard lives in the WHERE clause, so two concurrent deliveries
    cannot both apply the same transition: the second one matches no row.

    Args:
        db: Database session
        model: ORM model class
        record_id: Primary key of the row
        *conditions: Extra WHERE criteria (typically on status)
        **values: Column values to set

    Returns:
        True if the row was updated, False if the guard did not match
    """
    result = await db.execute(
        update(model)
        .where(model.id == record_id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0
