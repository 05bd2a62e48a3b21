"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the SQL database for another backend later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

OWNERSHIP CONTRACT: every method that touches an owned record takes the
owner's user_id and filters on it in the same lookup as the record id.
A record owned by someone else is indistinguishable from a missing one:
getters return None, updates return None, deletes return False.

Streak entries have no owner column. Callers MUST verify the parent
streak's ownership before calling any entry method.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncContextManager, Optional

from veryfin.models.finance import (
    Budget,
    BudgetCreate,
    Expense,
    ExpenseCreate,
    Goal,
    GoalCreate,
    SavingsStreak,
    SavingsStreakCreate,
    SessionRecord,
    StreakEntry,
    StreakEntryCreate,
    StreakProgress,
    User,
)


class UserStorageInterface(ABC):
    """Storage for registered users."""

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """
        Save a new user.

        Raises:
            DuplicateError: If the email is already registered
        """
        pass

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Look up a user by email (case-insensitive)."""
        pass


class SessionStorageInterface(ABC):
    """
    Storage for login sessions.

    Only the auth layer writes here. Everyone else sees the resolved user.
    """

    @abstractmethod
    async def save_session(self, session: SessionRecord) -> SessionRecord:
        pass

    @abstractmethod
    async def get_session(self, token: str) -> Optional[SessionRecord]:
        pass

    @abstractmethod
    async def touch_session(self, token: str, expires_at: datetime) -> bool:
        """
        Push a session's expiry forward.

        Returns:
            True if the session existed
        """
        pass

    @abstractmethod
    async def delete_session(self, token: str) -> bool:
        pass

    @abstractmethod
    async def purge_expired_sessions(self, now: datetime) -> int:
        """
        Delete every session that expired before now.

        Returns:
            Number of sessions removed
        """
        pass


class FinanceStorageInterface(ABC):
    """
    Storage for expenses, budgets, goals, savings streaks and streak entries.

    Partial updates receive a dict of only the fields the caller set;
    anything absent keeps its stored value.
    """

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_expense(self, user_id: str, data: ExpenseCreate) -> Expense:
        pass

    @abstractmethod
    async def get_expense(self, expense_id: int, user_id: str) -> Optional[Expense]:
        pass

    @abstractmethod
    async def list_expenses(
        self,
        user_id: str,
        category: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Expense]:
        """
        List a user's expenses, newest first.

        Args:
            user_id: Owner
            category: Exact category match
            date_from: Expenses on or after this date
            date_to: Expenses on or before this date
        """
        pass

    @abstractmethod
    async def update_expense(
        self,
        expense_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Expense]:
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: int, user_id: str) -> bool:
        pass

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_budget(self, user_id: str, data: BudgetCreate) -> Budget:
        pass

    @abstractmethod
    async def get_budget(self, budget_id: int, user_id: str) -> Optional[Budget]:
        pass

    @abstractmethod
    async def list_budgets(self, user_id: str) -> list[Budget]:
        pass

    @abstractmethod
    async def update_budget(
        self,
        budget_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Budget]:
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: int, user_id: str) -> bool:
        pass

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_goal(self, user_id: str, data: GoalCreate) -> Goal:
        pass

    @abstractmethod
    async def get_goal(self, goal_id: int, user_id: str) -> Optional[Goal]:
        pass

    @abstractmethod
    async def list_goals(self, user_id: str) -> list[Goal]:
        pass

    @abstractmethod
    async def update_goal(
        self,
        goal_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Goal]:
        pass

    @abstractmethod
    async def set_goal_current_amount(
        self,
        goal_id: int,
        user_id: str,
        amount: Decimal,
    ) -> Optional[Goal]:
        """
        Overwrite a goal's current_amount and nothing else.

        This is the ONLY way current_amount changes after creation.
        """
        pass

    @abstractmethod
    async def delete_goal(self, goal_id: int, user_id: str) -> bool:
        pass

    # -------------------------------------------------------------------------
    # Savings streaks
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_streak(self, user_id: str, data: SavingsStreakCreate) -> SavingsStreak:
        pass

    @abstractmethod
    async def get_streak(self, streak_id: int, user_id: str) -> Optional[SavingsStreak]:
        pass

    @abstractmethod
    async def list_streaks(self, user_id: str) -> list[SavingsStreak]:
        pass

    @abstractmethod
    async def update_streak(
        self,
        streak_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[SavingsStreak]:
        pass

    @abstractmethod
    async def update_streak_progress(
        self,
        streak_id: int,
        user_id: str,
        progress: StreakProgress,
    ) -> Optional[SavingsStreak]:
        """
        Write all four derived streak fields in a single write.
        """
        pass

    @abstractmethod
    async def delete_streak(self, streak_id: int, user_id: str) -> bool:
        """Delete a streak and every one of its entries."""
        pass

    @abstractmethod
    def streak_lock(self, streak_id: int) -> AsyncContextManager:
        """
        Serialize "add entry then recompute" for one streak.

        Two concurrent additions to the same streak would otherwise both
        read the old entry list and one set of derived fields would be lost.
        Hold this lock from the entry insert through the progress write.
        """
        pass

    # -------------------------------------------------------------------------
    # Streak entries (ownership checked by the caller, via the streak)
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_streak_entry(self, streak_id: int, data: StreakEntryCreate) -> StreakEntry:
        pass

    @abstractmethod
    async def list_streak_entries(self, streak_id: int) -> list[StreakEntry]:
        """All entries of a streak, newest save_date first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage (or not owned by the caller)."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
