"""
Core Data Models for Veryfin

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep server-owned fields (owner, derived totals) out of client payloads

Each entity comes in three shapes:
- <Entity>Create: what a client may send to create one
- <Entity>Update: what a client may send to change one (every field optional)
- <Entity>: what is stored and returned

DESIGN DECISION: Money is Decimal everywhere. Streak totals are recomputed
from scratch on every new entry, so float drift would compound.
"""

import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


Money = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class StreakFrequency(str, Enum):
    """
    How often a streak expects a contribution.

    The engine maps each value to the largest gap in days that still
    keeps the streak alive.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# =============================================================================
# USERS & SESSIONS
# =============================================================================

class User(BaseModel):
    """
    A registered user as stored.

    CRITICAL: password_hash never leaves the server. Use UserPublic
    for anything that is sent to a client.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Opaque unique user ID"
    )
    email: EmailStr
    password_hash: str
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('email')
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class UserPublic(BaseModel):
    """The client-facing view of a user."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
        )


class RegisterRequest(BaseModel):
    """Registration payload."""
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(BaseModel):
    """Login payload."""
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class SessionRecord(BaseModel):
    """A server-side login session, keyed by its cookie token."""

    token: str
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# =============================================================================
# EXPENSES
# =============================================================================

class ExpenseCreate(BaseModel):
    """
    A new expense.

    Recurring expenses repeat on day_of_month until end_date (if any).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=3, max_length=200)
    amount: Money
    category: str = Field(..., min_length=1, max_length=50)
    date: dt.date
    is_recurring: bool = False
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    end_date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None

    @model_validator(mode='after')
    def validate_dates(self) -> 'ExpenseCreate':
        if self.end_date and self.end_date < self.date:
            raise ValueError("End date cannot be before expense date")
        return self


class ExpenseUpdate(BaseModel):
    """Partial expense update. Unset fields are left alone."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = Field(default=None, min_length=3, max_length=200)
    amount: Optional[Money] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    is_recurring: Optional[bool] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None


class Expense(ExpenseCreate):
    """A stored expense."""

    id: int
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetCreate(BaseModel):
    """A spending limit for one category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    category: str = Field(..., min_length=1, max_length=50)
    amount: Money
    period: str = Field(default="monthly", min_length=1, max_length=20)


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    amount: Optional[Money] = None
    period: Optional[str] = Field(default=None, min_length=1, max_length=20)


class Budget(BudgetCreate):
    """A stored budget."""

    id: int
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# GOALS
# =============================================================================

class GoalCreate(BaseModel):
    """
    A new savings goal.

    current_amount may be seeded here. After creation it only moves
    through the dedicated progress operation.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_amount: Money
    current_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=14, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=50)
    target_date: date
    status: str = Field(default="active", min_length=1, max_length=20)


class GoalUpdate(BaseModel):
    """
    Partial goal update.

    CRITICAL: current_amount is deliberately absent. A blind overwrite
    here could wipe out accumulated progress.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_amount: Optional[Money] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    target_date: Optional[date] = None
    status: Optional[str] = Field(default=None, min_length=1, max_length=20)


class GoalProgressUpdate(BaseModel):
    """
    Body of the progress endpoint.

    The value is checked by the goal flow, not here, so the same rules
    apply whether the call comes over HTTP or from code.
    """

    amount: Any = None


class Goal(GoalCreate):
    """A stored goal."""

    id: int
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# SAVINGS STREAKS
# =============================================================================

class SavingsStreakCreate(BaseModel):
    """
    A new savings streak challenge.

    Progress fields (current/longest streak, total saved, last save date)
    are derived from entries and cannot be set by the client.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    challenge_name: str = Field(..., min_length=3, max_length=200)
    target_amount: Money
    frequency: StreakFrequency
    is_active: bool = True
    start_date: date = Field(default_factory=date.today)
    end_date: Optional[date] = None

    @model_validator(mode='after')
    def validate_dates(self) -> 'SavingsStreakCreate':
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self


class SavingsStreakUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    challenge_name: Optional[str] = Field(default=None, min_length=3, max_length=200)
    target_amount: Optional[Money] = None
    frequency: Optional[StreakFrequency] = None
    is_active: Optional[bool] = None
    end_date: Optional[date] = None


class StreakProgress(BaseModel):
    """
    The derived fields of a streak.

    Produced by the streak engine, written back as one unit.
    """

    total_saved: Decimal = Field(default=Decimal("0"), ge=0)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_save_date: Optional[date] = None


class SavingsStreak(SavingsStreakCreate):
    """A stored savings streak, including its derived progress."""

    id: int
    user_id: str
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_save_date: Optional[date] = None
    total_saved: Decimal = Field(default=Decimal("0"), ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def progress(self) -> StreakProgress:
        return StreakProgress(
            total_saved=self.total_saved,
            current_streak=self.current_streak,
            longest_streak=self.longest_streak,
            last_save_date=self.last_save_date,
        )


class StreakEntryCreate(BaseModel):
    """One contribution toward a streak."""

    amount: Money
    save_date: date = Field(default_factory=date.today)


class StreakEntry(StreakEntryCreate):
    """A stored streak entry."""

    id: int
    streak_id: int
    created_at: datetime = Field(default_factory=utcnow)


class StreakEntryResult(BaseModel):
    """The new entry together with the streak as recalculated after it."""

    entry: StreakEntry
    streak: SavingsStreak


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_type', 'out_of_range')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )


# =============================================================================
# EXTERNAL DATA
# =============================================================================

class ExchangeRates(BaseModel):
    """Exchange rates relative to one base currency."""

    base: str
    rates: dict[str, Decimal]
    last_updated: Optional[str] = None
