"""
SQLAlchemy table definitions for the SQL storage backend.

Money columns are Numeric(14, 2); dates that users pick are Date;
server timestamps are timezone-aware UTC.
"""

from datetime import timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import declarative_base


Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """
    DateTime that always comes back timezone-aware.

    SQLite drops tzinfo on write, so values are normalised to UTC on the
    way in and tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


MONEY = Numeric(14, 2)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)


class SessionRow(Base):
    __tablename__ = "sessions"

    token = Column(String(128), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)


class ExpenseRow(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(String(200), nullable=False)
    amount = Column(MONEY, nullable=False)
    category = Column(String(50), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    day_of_month = Column(Integer, nullable=True)
    end_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)


class BudgetRow(Base):
    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(50), nullable=False)
    amount = Column(MONEY, nullable=False)
    period = Column(String(20), nullable=False, default="monthly")
    created_at = Column(UTCDateTime, nullable=False)


class GoalRow(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    target_amount = Column(MONEY, nullable=False)
    current_amount = Column(MONEY, nullable=False, default=0)
    category = Column(String(50), nullable=False)
    target_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)


class SavingsStreakRow(Base):
    __tablename__ = "savings_streaks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    challenge_name = Column(String(200), nullable=False)
    target_amount = Column(MONEY, nullable=False)
    frequency = Column(String(10), nullable=False)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    last_save_date = Column(Date, nullable=True)
    total_saved = Column(MONEY, nullable=False, default=0)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)


class StreakEntryRow(Base):
    __tablename__ = "streak_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    streak_id = Column(
        Integer,
        ForeignKey("savings_streaks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = Column(MONEY, nullable=False)
    save_date = Column(Date, nullable=False)
    created_at = Column(UTCDateTime, nullable=False)
