"""
Base columns for SQLModel ORM

Every timestamp column is timezone-aware; processor timestamps are compared
against stored values, so naive datetimes are never written.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, func
from sqlmodel import Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def timestamp_field(
    *,
    nullable: bool = True,
    index: bool = False,
    default_now: bool = False,
) -> Optional[datetime]:
    """Field backed by a ``TIMESTAMP WITH TIME ZONE`` column."""
    if default_now:
        # Core inserts (the upserts) bypass default_factory, so the column
        # carries its own defaults too
        return Field(
            default_factory=utc_now,
            sa_column=Column(
                DateTime(timezone=True),
                nullable=nullable,
                index=index,
                default=utc_now,
                server_default=func.now(),
            ),
        )
    return Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=nullable, index=index),
    )
