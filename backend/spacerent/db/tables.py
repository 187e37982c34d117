"""
Single source of truth for database tables that exist after migrations (001).
alembic/env.py asserts the registered models match this list.
"""
# All tables that exist in the DB. Must match models and migrations.
ALL_TABLE_NAMES = (
    "spaces",
    "space_entry_payments",
    "space_visitors",
    "payment_receipts",
)
