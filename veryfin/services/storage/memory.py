"""
In-Memory Storage Implementation

Holds everything in dicts for the lifetime of the process.
Used by the test suite and by the `memory` storage backend for
local experiments. Nothing survives a restart.

Records are stored as pydantic models and copied on the way in and
out, so callers can never mutate stored state by accident.
"""

import asyncio
import itertools
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional, TypeVar

from pydantic import BaseModel

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
from veryfin.services.storage.interface import (
    DuplicateError,
    FinanceStorageInterface,
    SessionStorageInterface,
    UserStorageInterface,
)


OwnedModel = TypeVar("OwnedModel", Expense, Budget, Goal, SavingsStreak)


class InMemoryStorage(UserStorageInterface, SessionStorageInterface, FinanceStorageInterface):
    """
    Dict-backed implementation of every storage interface.
    """

    def __init__(self):
        self._users: dict[str, User] = {}
        self._sessions: dict[str, SessionRecord] = {}
        self._expenses: dict[int, Expense] = {}
        self._budgets: dict[int, Budget] = {}
        self._goals: dict[int, Goal] = {}
        self._streaks: dict[int, SavingsStreak] = {}
        self._entries: dict[int, StreakEntry] = {}
        self._ids: dict[str, itertools.count] = defaultdict(lambda: itertools.count(1))
        self._streak_locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _next_id(self, table: str) -> int:
        return next(self._ids[table])

    @staticmethod
    def _owned(
        table: dict[int, OwnedModel],
        record_id: int,
        user_id: str,
    ) -> Optional[OwnedModel]:
        record = table.get(record_id)
        if record is None or record.user_id != user_id:
            return None
        return record

    @staticmethod
    def _merge(record: BaseModel, changes: dict[str, Any]) -> Any:
        # Re-validate so a partial update cannot produce an invalid record
        merged = record.model_dump()
        merged.update(changes)
        return type(record).model_validate(merged)

    def _update_owned(
        self,
        table: dict[int, OwnedModel],
        record_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[OwnedModel]:
        record = self._owned(table, record_id, user_id)
        if record is None:
            return None
        updated = self._merge(record, changes)
        table[record_id] = updated
        return updated.model_copy()

    def _delete_owned(self, table: dict[int, OwnedModel], record_id: int, user_id: str) -> bool:
        if self._owned(table, record_id, user_id) is None:
            return False
        del table[record_id]
        return True

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def create_user(self, user: User) -> User:
        if await self.get_user_by_email(user.email) is not None:
            raise DuplicateError(f"Email already registered: {user.email}")
        self._users[user.id] = user.model_copy()
        return user.model_copy()

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy() if user else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        for user in self._users.values():
            if user.email == email:
                return user.model_copy()
        return None

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def save_session(self, session: SessionRecord) -> SessionRecord:
        self._sessions[session.token] = session.model_copy()
        return session

    async def get_session(self, token: str) -> Optional[SessionRecord]:
        session = self._sessions.get(token)
        return session.model_copy() if session else None

    async def touch_session(self, token: str, expires_at: datetime) -> bool:
        session = self._sessions.get(token)
        if session is None:
            return False
        self._sessions[token] = session.model_copy(update={"expires_at": expires_at})
        return True

    async def delete_session(self, token: str) -> bool:
        return self._sessions.pop(token, None) is not None

    async def purge_expired_sessions(self, now: datetime) -> int:
        expired = [token for token, session in self._sessions.items() if session.is_expired(now)]
        for token in expired:
            del self._sessions[token]
        return len(expired)

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def create_expense(self, user_id: str, data: ExpenseCreate) -> Expense:
        expense = Expense(id=self._next_id("expenses"), user_id=user_id, **data.model_dump())
        self._expenses[expense.id] = expense
        return expense.model_copy()

    async def get_expense(self, expense_id: int, user_id: str) -> Optional[Expense]:
        expense = self._owned(self._expenses, expense_id, user_id)
        return expense.model_copy() if expense else None

    async def list_expenses(
        self,
        user_id: str,
        category: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Expense]:
        expenses = []
        for expense in self._expenses.values():
            if expense.user_id != user_id:
                continue
            if category and expense.category != category:
                continue
            if date_from and expense.date < date_from:
                continue
            if date_to and expense.date > date_to:
                continue
            expenses.append(expense.model_copy())

        expenses.sort(key=lambda e: (e.date, e.id), reverse=True)
        return expenses

    async def update_expense(
        self,
        expense_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Expense]:
        return self._update_owned(self._expenses, expense_id, user_id, changes)

    async def delete_expense(self, expense_id: int, user_id: str) -> bool:
        return self._delete_owned(self._expenses, expense_id, user_id)

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def create_budget(self, user_id: str, data: BudgetCreate) -> Budget:
        budget = Budget(id=self._next_id("budgets"), user_id=user_id, **data.model_dump())
        self._budgets[budget.id] = budget
        return budget.model_copy()

    async def get_budget(self, budget_id: int, user_id: str) -> Optional[Budget]:
        budget = self._owned(self._budgets, budget_id, user_id)
        return budget.model_copy() if budget else None

    async def list_budgets(self, user_id: str) -> list[Budget]:
        return [b.model_copy() for b in self._budgets.values() if b.user_id == user_id]

    async def update_budget(
        self,
        budget_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Budget]:
        return self._update_owned(self._budgets, budget_id, user_id, changes)

    async def delete_budget(self, budget_id: int, user_id: str) -> bool:
        return self._delete_owned(self._budgets, budget_id, user_id)

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    async def create_goal(self, user_id: str, data: GoalCreate) -> Goal:
        goal = Goal(id=self._next_id("goals"), user_id=user_id, **data.model_dump())
        self._goals[goal.id] = goal
        return goal.model_copy()

    async def get_goal(self, goal_id: int, user_id: str) -> Optional[Goal]:
        goal = self._owned(self._goals, goal_id, user_id)
        return goal.model_copy() if goal else None

    async def list_goals(self, user_id: str) -> list[Goal]:
        return [g.model_copy() for g in self._goals.values() if g.user_id == user_id]

    async def update_goal(
        self,
        goal_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Goal]:
        return self._update_owned(
            self._goals,
            goal_id,
            user_id,
            {**changes, "updated_at": datetime.now(timezone.utc)},
        )

    async def set_goal_current_amount(
        self,
        goal_id: int,
        user_id: str,
        amount: Decimal,
    ) -> Optional[Goal]:
        return self._update_owned(
            self._goals,
            goal_id,
            user_id,
            {"current_amount": amount, "updated_at": datetime.now(timezone.utc)},
        )

    async def delete_goal(self, goal_id: int, user_id: str) -> bool:
        return self._delete_owned(self._goals, goal_id, user_id)

    # -------------------------------------------------------------------------
    # Savings streaks
    # -------------------------------------------------------------------------

    async def create_streak(self, user_id: str, data: SavingsStreakCreate) -> SavingsStreak:
        streak = SavingsStreak(id=self._next_id("streaks"), user_id=user_id, **data.model_dump())
        self._streaks[streak.id] = streak
        return streak.model_copy()

    async def get_streak(self, streak_id: int, user_id: str) -> Optional[SavingsStreak]:
        streak = self._owned(self._streaks, streak_id, user_id)
        return streak.model_copy() if streak else None

    async def list_streaks(self, user_id: str) -> list[SavingsStreak]:
        return [s.model_copy() for s in self._streaks.values() if s.user_id == user_id]

    async def update_streak(
        self,
        streak_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[SavingsStreak]:
        return self._update_owned(
            self._streaks,
            streak_id,
            user_id,
            {**changes, "updated_at": datetime.now(timezone.utc)},
        )

    async def update_streak_progress(
        self,
        streak_id: int,
        user_id: str,
        progress: StreakProgress,
    ) -> Optional[SavingsStreak]:
        return self._update_owned(
            self._streaks,
            streak_id,
            user_id,
            {**progress.model_dump(), "updated_at": datetime.now(timezone.utc)},
        )

    async def delete_streak(self, streak_id: int, user_id: str) -> bool:
        if not self._delete_owned(self._streaks, streak_id, user_id):
            return False
        for entry_id in [e.id for e in self._entries.values() if e.streak_id == streak_id]:
            del self._entries[entry_id]
        self._streak_locks.pop(streak_id, None)
        return True

    def streak_lock(self, streak_id: int) -> asyncio.Lock:
        return self._streak_locks[streak_id]

    # -------------------------------------------------------------------------
    # Streak entries
    # -------------------------------------------------------------------------

    async def add_streak_entry(self, streak_id: int, data: StreakEntryCreate) -> StreakEntry:
        entry = StreakEntry(id=self._next_id("entries"), streak_id=streak_id, **data.model_dump())
        self._entries[entry.id] = entry
        return entry.model_copy()

    async def list_streak_entries(self, streak_id: int) -> list[StreakEntry]:
        entries = [e.model_copy() for e in self._entries.values() if e.streak_id == streak_id]
        entries.sort(key=lambda e: (e.save_date, e.id), reverse=True)
        return entries
