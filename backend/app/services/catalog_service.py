"""
Resource catalog: the restaurant's tables.

Management operations (create, update) are the only writers of table
definitions. The engine itself only ever touches a table's `version`, and only
through `claim_tables`:

  UPDATE restaurant_tables SET version = version + 1
  WHERE id = :table_id AND version = :seen_version

Every path that attaches tables to a booking (accept, instant create, walk-in,
check-in, seat, reassign, waitlist promotion) claims them this way after its
conflict check. If two transactions race for the same table, at most one
UPDATE matches the version both of them read; the other gets rowcount 0 and
fails with ConcurrencyConflictError. The loser's unit of work rolls back, so
nothing it did before the claim is visible.
"""

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.errors import ValidationError, NotFoundError, ConflictError, ConcurrencyConflictError
from app.core.logging import get_logger
from app.core.metrics import record_concurrency_conflict
from app.db.session import is_serialization_failure
from app.models.table import RestaurantTable
from app.schemas.table import TableCreate, TableUpdate

logger = get_logger(__name__)

MAX_TABLES_PER_BOOKING = 2


async def create_table(db: AsyncSession, table_data: TableCreate) -> RestaurantTable:
    table = RestaurantTable(**table_data.model_dump())
    db.add(table)
    try:
        await db.flush()
    except IntegrityError:
        raise ConflictError(
            f"Table number {table_data.table_number} already exists",
            table_number=table_data.table_number,
        )
    await db.refresh(table)

    logger.info(
        "table_created",
        table_id=table.id,
        table_number=table.table_number,
        capacity=f"{table.min_capacity}-{table.max_capacity}",
    )
    return table


async def get_table(db: AsyncSession, table_id: int) -> RestaurantTable:
    result = await db.execute(select(RestaurantTable).where(RestaurantTable.id == table_id))
    table = result.scalar_one_or_none()

    if not table:
        raise NotFoundError(f"Table {table_id} not found", table_id=table_id)
    return table


async def list_tables(db: AsyncSession, active_only: bool = False) -> list[RestaurantTable]:
    """Tables ordered by table number, which is also the planner's scan order."""
    query = select(RestaurantTable)
    if active_only:
        query = query.where(RestaurantTable.active.is_(True))
    result = await db.execute(query.order_by(RestaurantTable.table_number, RestaurantTable.id))
    return list(result.scalars().all())


async def update_table(db: AsyncSession, table_id: int, table_data: TableUpdate) -> RestaurantTable:
    """
    Apply a management change to a table.

    Bumps the version so an allocation that read the old definition cannot
    claim the table on stale terms.
    """
    table = await get_table(db, table_id)
    changes = table_data.model_dump(exclude_unset=True)

    min_capacity = changes.get("min_capacity", table.min_capacity)
    max_capacity = changes.get("max_capacity", table.max_capacity)
    if max_capacity < min_capacity:
        raise ValidationError(
            "max_capacity must be >= min_capacity",
            min_capacity=min_capacity,
            max_capacity=max_capacity,
        )

    for key, value in changes.items():
        setattr(table, key, value)
    table.version = table.version + 1
    await db.flush()
    await db.refresh(table)

    logger.info("table_updated", table_id=table.id, fields=sorted(changes), version=table.version)
    return table


async def resolve_tables(db: AsyncSession, table_ids: list[int], party_size: int) -> list[RestaurantTable]:
    """
    Load and validate an explicit table set for a party.

    Rules: 1 or 2 distinct, existing, active tables; a pair must be combinable
    and accept each other; summed max capacity must seat the party. Returned in
    the order given.
    """
    if not table_ids:
        raise ValidationError("At least one table id is required")
    if len(set(table_ids)) != len(table_ids):
        raise ValidationError("Table ids must be distinct", table_ids=list(table_ids))
    if len(table_ids) > MAX_TABLES_PER_BOOKING:
        raise ValidationError(
            f"At most {MAX_TABLES_PER_BOOKING} tables can be combined",
            table_ids=list(table_ids),
        )

    result = await db.execute(select(RestaurantTable).where(RestaurantTable.id.in_(table_ids)))
    by_id = {table.id: table for table in result.scalars().all()}

    missing = [table_id for table_id in table_ids if table_id not in by_id]
    if missing:
        raise NotFoundError("Unknown table ids", table_ids=missing)

    tables = [by_id[table_id] for table_id in table_ids]
    inactive = [table.id for table in tables if not table.active]
    if inactive:
        raise ValidationError("Inactive tables cannot be assigned", table_ids=inactive)

    if len(tables) == 2:
        first, second = tables
        if not (first.combinable and second.combinable):
            raise ValidationError(
                "Both tables must be combinable to be assigned together",
                table_ids=list(table_ids),
            )
        if not (first.accepts_partner(second) and second.accepts_partner(first)):
            raise ValidationError(
                "Tables are not allowed to be combined with each other",
                table_ids=list(table_ids),
            )

    total_capacity = sum(table.max_capacity for table in tables)
    if total_capacity < party_size:
        raise ValidationError(
            "Assigned tables cannot seat the party",
            party_size=party_size,
            total_capacity=total_capacity,
        )

    total_minimum = sum(table.min_capacity for table in tables)
    if party_size < total_minimum:
        # Allowed for manual assignment, but worth a line in the log
        logger.warning(
            "assignment_below_minimum_capacity",
            table_ids=list(table_ids),
            party_size=party_size,
            minimum=total_minimum,
        )
    return tables


async def claim_tables(db: AsyncSession, tables: list[RestaurantTable]) -> None:
    """Compare-and-swap each table's version; raises if any was changed since read."""
    for table in sorted(tables, key=lambda t: t.id):
        seen_version = table.version
        try:
            result = await db.execute(
                update(RestaurantTable)
                .where(
                    RestaurantTable.id == table.id,
                    RestaurantTable.version == seen_version,
                )
                .values(version=seen_version + 1)
                .execution_options(synchronize_session=False)
            )
            matched = result.rowcount
        except DBAPIError as e:
            if not is_serialization_failure(e):
                raise
            matched = 0
        if matched == 0:
            record_concurrency_conflict("table")
            logger.info("table_claim_conflict", table_id=table.id, seen_version=seen_version)
            raise ConcurrencyConflictError(
                f"Table {table.id} was claimed by a concurrent operation",
                table_id=table.id,
                seen_version=seen_version,
            )
        set_committed_value(table, "version", seen_version + 1)
