"""SQLAlchemy Core table definitions for the txnlab database.

A single ``accounts`` table. ``version`` increments on every committed
balance write so readers can spot concurrent modification.
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Column, Integer, MetaData, Numeric, String, Table

metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    Column("id", String, primary_key=True),
    Column("owner_name", String, nullable=True),
    Column("balance", Numeric(12, 2), nullable=False, default=0),
    Column("version", Integer, nullable=False, default=0),
    CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
)
