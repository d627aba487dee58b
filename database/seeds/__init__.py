"""
Seed data orchestration module.

Provides seed_all() to create the tables (SQL backend), the default
notification templates and the messaging settings row.
Can be run standalone: python -m database.seeds
"""

from shared.config import get_settings


async def seed_all() -> None:
    """
    Execute all seed steps against the configured store.

    Order:
    1. tables (SQL backend only)
    2. notification templates - one per type, existing types skipped
    3. messaging settings - environment defaults, only when missing
    """
    # Imported here: booking.context imports the seed functions from this package
    from booking.context import BookingContext

    print("Starting database seeding...")
    print("-" * 50)

    context = BookingContext.build(get_settings())
    try:
        await context.prepare()
    finally:
        await context.stop()

    print("-" * 50)
    print(" Database seeding complete!")
