"""
Main Orchestrator for Veryfin

This module ties together all the components and defines the
end-to-end flows for:
1. Expenses, budgets and goals (validate -> scope to owner -> store -> audit)
2. Goal progress (validate amount -> overwrite current_amount -> audit)
3. Savings streaks (validate entry -> lock -> insert -> recompute -> write back)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every operation is scoped to the user_id the Auth Gate resolved
- A record owned by someone else is reported exactly like a missing one
- No payload reaches storage unvalidated
- Every step is audited

The HTTP layer only translates requests into these calls.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional, Type, Union
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from veryfin.audit import AuditLogger, create_correlation_id
from veryfin.auth import AuthGate, SessionManager
from veryfin.config import get_settings
from veryfin.models.finance import (
    Budget,
    BudgetCreate,
    BudgetUpdate,
    Expense,
    ExpenseCreate,
    ExpenseUpdate,
    Goal,
    GoalCreate,
    GoalUpdate,
    SavingsStreak,
    SavingsStreakCreate,
    SavingsStreakUpdate,
    StreakEntry,
    StreakEntryCreate,
    StreakEntryResult,
    StreakProgress,
)
from veryfin.services.currency import ExchangeRateService
from veryfin.services.storage import (
    FinanceStorageInterface,
    InMemoryStorage,
    NotFoundError,
    SQLDatabase,
    SQLStorage,
)
from veryfin.streaks import compute_streak_progress
from veryfin.validation import (
    ValidationFailedError,
    issues_from_errors,
    parse_payload,
    validate_progress_amount,
)


Payload = Union[BaseModel, dict[str, Any]]


class _OwnedRecordFlow:
    """
    Shared plumbing for flows over user-owned records.

    Subclasses set entity_type; it names the record in audit events
    and in the not-found message.
    """

    entity_type: str = "record"

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    def _not_found(self) -> NotFoundError:
        # Same message whether the id is unknown or belongs to another user
        return NotFoundError(f"{self.entity_type.capitalize()} not found")

    async def _validation_failed(
        self,
        operation: str,
        error: ValidationFailedError,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                operation=operation,
                issues=error.issues_as_dicts(),
                user_id=user_id,
                correlation_id=correlation_id,
            )

    async def _parse(
        self,
        model_cls: Type[BaseModel],
        data: Payload,
        operation: str,
        user_id: str,
        correlation_id: UUID,
    ) -> Any:
        """Parse a payload, auditing the failure before re-raising it."""
        try:
            return parse_payload(model_cls, data, operation)
        except ValidationFailedError as e:
            await self._validation_failed(operation, e, user_id, correlation_id)
            raise

    async def _apply_update(
        self,
        update: Callable,
        record_id: int,
        user_id: str,
        model_cls: Type[BaseModel],
        data: Payload,
        correlation_id: Optional[UUID],
    ) -> Any:
        """
        Validate a partial update, hand only the set fields to storage, audit.

        Storage re-validates the merged record, so cross-field rules
        (e.g. end_date vs date) also hold for updates.
        """
        correlation_id = correlation_id or create_correlation_id()
        operation = f"update_{self.entity_type}"

        changes_model = await self._parse(model_cls, data, operation, user_id, correlation_id)
        changes = changes_model.model_dump(exclude_unset=True)

        try:
            record = await update(record_id, user_id, changes)
        except PydanticValidationError as e:
            error = ValidationFailedError(
                f"Invalid data for {operation}",
                issues_from_errors(e.errors()),
            )
            await self._validation_failed(operation, error, user_id, correlation_id)
            raise error from e

        if record is None:
            raise self._not_found()

        if self._audit_logger:
            await self._audit_logger.log_entity_updated(
                entity_type=self.entity_type,
                entity_id=record_id,
                user_id=user_id,
                changed_fields=sorted(changes),
                correlation_id=correlation_id,
            )
        return record

    async def _audit_created(self, record_id: int, user_id: str, correlation_id: UUID) -> None:
        if self._audit_logger:
            await self._audit_logger.log_entity_created(
                entity_type=self.entity_type,
                entity_id=record_id,
                user_id=user_id,
                correlation_id=correlation_id,
            )

    async def _apply_delete(
        self,
        delete: Callable,
        record_id: int,
        user_id: str,
        correlation_id: Optional[UUID],
    ) -> None:
        if not await delete(record_id, user_id):
            raise self._not_found()

        if self._audit_logger:
            await self._audit_logger.log_entity_deleted(
                entity_type=self.entity_type,
                entity_id=record_id,
                user_id=user_id,
                correlation_id=correlation_id or create_correlation_id(),
            )


class ExpenseFlow(_OwnedRecordFlow):
    """One-off and recurring expenses."""

    entity_type = "expense"

    async def create(
        self,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        correlation_id = correlation_id or create_correlation_id()
        expense_data = await self._parse(
            ExpenseCreate, data, "create_expense", user_id, correlation_id
        )
        expense = await self._storage.create_expense(user_id, expense_data)
        await self._audit_created(expense.id, user_id, correlation_id)
        return expense

    async def get(self, expense_id: int, user_id: str) -> Expense:
        expense = await self._storage.get_expense(expense_id, user_id)
        if expense is None:
            raise self._not_found()
        return expense

    async def list_for_user(
        self,
        user_id: str,
        category: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Expense]:
        """A user's expenses, newest first. Date bounds are inclusive."""
        return await self._storage.list_expenses(
            user_id,
            category=category,
            date_from=date_from,
            date_to=date_to,
        )

    async def update(
        self,
        expense_id: int,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        return await self._apply_update(
            self._storage.update_expense, expense_id, user_id,
            ExpenseUpdate, data, correlation_id,
        )

    async def delete(
        self,
        expense_id: int,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._apply_delete(self._storage.delete_expense, expense_id, user_id, correlation_id)


class BudgetFlow(_OwnedRecordFlow):
    entity_type = "budget"

    async def create(
        self,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        correlation_id = correlation_id or create_correlation_id()
        budget_data = await self._parse(
            BudgetCreate, data, "create_budget", user_id, correlation_id
        )
        budget = await self._storage.create_budget(user_id, budget_data)
        await self._audit_created(budget.id, user_id, correlation_id)
        return budget

    async def get(self, budget_id: int, user_id: str) -> Budget:
        budget = await self._storage.get_budget(budget_id, user_id)
        if budget is None:
            raise self._not_found()
        return budget

    async def list_for_user(self, user_id: str) -> list[Budget]:
        return await self._storage.list_budgets(user_id)

    async def update(
        self,
        budget_id: int,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        return await self._apply_update(
            self._storage.update_budget, budget_id, user_id,
            BudgetUpdate, data, correlation_id,
        )

    async def delete(
        self,
        budget_id: int,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._apply_delete(self._storage.delete_budget, budget_id, user_id, correlation_id)


class GoalFlow(_OwnedRecordFlow):
    """
    Savings goals.

    CRITICAL: current_amount is never touched by update(). It moves
    only through set_current_amount(), which validates the amount and
    overwrites that single field.
    """

    entity_type = "goal"

    async def create(
        self,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        correlation_id = correlation_id or create_correlation_id()
        goal_data = await self._parse(GoalCreate, data, "create_goal", user_id, correlation_id)
        goal = await self._storage.create_goal(user_id, goal_data)
        await self._audit_created(goal.id, user_id, correlation_id)
        return goal

    async def get(self, goal_id: int, user_id: str) -> Goal:
        goal = await self._storage.get_goal(goal_id, user_id)
        if goal is None:
            raise self._not_found()
        return goal

    async def list_for_user(self, user_id: str) -> list[Goal]:
        return await self._storage.list_goals(user_id)

    async def update(
        self,
        goal_id: int,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        return await self._apply_update(
            self._storage.update_goal, goal_id, user_id,
            GoalUpdate, data, correlation_id,
        )

    async def set_current_amount(
        self,
        goal_id: int,
        user_id: str,
        amount: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        """
        Overwrite a goal's current_amount.

        Args:
            amount: Raw value from the caller; must be a finite number >= 0

        Raises:
            ValidationFailedError: amount is missing, not a number, or negative
            NotFoundError: No such goal for this user
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            new_amount = validate_progress_amount(amount)
        except ValidationFailedError as e:
            await self._validation_failed("update_goal_progress", e, user_id, correlation_id)
            raise

        previous = await self._storage.get_goal(goal_id, user_id)
        if previous is None:
            raise self._not_found()

        try:
            goal = await self._storage.set_goal_current_amount(goal_id, user_id, new_amount)
        except PydanticValidationError as e:
            error = ValidationFailedError(
                "Invalid amount",
                issues_from_errors(e.errors()),
            )
            await self._validation_failed("update_goal_progress", error, user_id, correlation_id)
            raise error from e

        if goal is None:
            raise self._not_found()

        if self._audit_logger:
            await self._audit_logger.log_goal_progress_updated(
                goal_id=goal_id,
                user_id=user_id,
                previous_amount=str(previous.current_amount),
                new_amount=str(goal.current_amount),
                correlation_id=correlation_id,
            )
        return goal

    async def delete(
        self,
        goal_id: int,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._apply_delete(self._storage.delete_goal, goal_id, user_id, correlation_id)


class StreakFlow(_OwnedRecordFlow):
    """
    Savings streak challenges and their entries.

    Flow for a new entry:
    1. Validate the entry
    2. Re-verify the caller owns the streak
    3. Under the streak's lock: insert, reload every entry,
       recompute progress, write the four derived fields back
    4. Audit the entry and the recalculation

    Derived fields are never accepted from a client.
    """

    entity_type = "streak"

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        today_provider: Callable[[], date] = date.today,
    ):
        super().__init__(storage, audit_logger)
        self._today = today_provider

    async def create(
        self,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> SavingsStreak:
        correlation_id = correlation_id or create_correlation_id()
        streak_data = await self._parse(
            SavingsStreakCreate, data, "create_streak", user_id, correlation_id
        )
        streak = await self._storage.create_streak(user_id, streak_data)
        await self._audit_created(streak.id, user_id, correlation_id)
        return streak

    async def get(self, streak_id: int, user_id: str) -> SavingsStreak:
        streak = await self._storage.get_streak(streak_id, user_id)
        if streak is None:
            raise self._not_found()
        return streak

    async def list_for_user(self, user_id: str) -> list[SavingsStreak]:
        return await self._storage.list_streaks(user_id)

    async def update(
        self,
        streak_id: int,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> SavingsStreak:
        """Apply a partial update; a new frequency recomputes progress."""
        correlation_id = correlation_id or create_correlation_id()

        async with self._storage.streak_lock(streak_id):
            previous = await self._storage.get_streak(streak_id, user_id)
            updated = await self._apply_update(
                self._storage.update_streak, streak_id, user_id,
                SavingsStreakUpdate, data, correlation_id,
            )
            if previous is None or updated.frequency == previous.frequency:
                return updated
            progress, recalculated = await self._recalculate(updated, user_id)

        if recalculated is None:
            raise self._not_found()
        await self._audit_recalculated(streak_id, user_id, progress, correlation_id)
        return recalculated

    async def _recalculate(
        self,
        streak: SavingsStreak,
        user_id: str,
    ) -> tuple[StreakProgress, Optional[SavingsStreak]]:
        """Recompute progress from every entry. Caller holds the streak lock."""
        entries = await self._storage.list_streak_entries(streak.id)
        progress = compute_streak_progress(
            frequency=streak.frequency,
            stored_longest_streak=streak.longest_streak,
            entries=entries,
            today=self._today(),
        )
        updated = await self._storage.update_streak_progress(streak.id, user_id, progress)
        return progress, updated

    async def _audit_recalculated(
        self,
        streak_id: int,
        user_id: str,
        progress: StreakProgress,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_streak_recalculated(
                streak_id=streak_id,
                user_id=user_id,
                current_streak=progress.current_streak,
                longest_streak=progress.longest_streak,
                total_saved=str(progress.total_saved),
                correlation_id=correlation_id,
            )

    async def delete(
        self,
        streak_id: int,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete a streak together with all of its entries."""
        await self._apply_delete(self._storage.delete_streak, streak_id, user_id, correlation_id)

    async def add_entry(
        self,
        streak_id: int,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> StreakEntryResult:
        """
        Record a contribution and recalculate the streak.

        Returns:
            The stored entry and the streak with refreshed progress

        Raises:
            ValidationFailedError: Bad amount or date
            NotFoundError: No such streak for this user
        """
        correlation_id = correlation_id or create_correlation_id()
        entry_data = await self._parse(
            StreakEntryCreate, data, "add_streak_entry", user_id, correlation_id
        )

        async with self._storage.streak_lock(streak_id):
            streak = await self._storage.get_streak(streak_id, user_id)
            if streak is None:
                raise self._not_found()

            entry = await self._storage.add_streak_entry(streak_id, entry_data)
            progress, updated = await self._recalculate(streak, user_id)

        if updated is None:
            # Deleted between the insert and the write-back
            raise self._not_found()

        if self._audit_logger:
            await self._audit_logger.log_streak_entry_added(
                streak_id=streak_id,
                entry_id=entry.id,
                user_id=user_id,
                amount=str(entry.amount),
                save_date=entry.save_date.isoformat(),
                correlation_id=correlation_id,
            )
        await self._audit_recalculated(streak_id, user_id, progress, correlation_id)

        return StreakEntryResult(entry=entry, streak=updated)

    async def list_entries(self, streak_id: int, user_id: str) -> list[StreakEntry]:
        """Entries of an owned streak, newest first."""
        if await self._storage.get_streak(streak_id, user_id) is None:
            raise self._not_found()
        return await self._storage.list_streak_entries(streak_id)


@dataclass
class AppComponents:
    """Everything the HTTP layer needs, wired to one storage backend."""

    storage: Any
    auth_gate: AuthGate
    expense_flow: ExpenseFlow
    budget_flow: BudgetFlow
    goal_flow: GoalFlow
    streak_flow: StreakFlow
    exchange_rate_service: ExchangeRateService
    audit_logger: AuditLogger
    database: Optional[SQLDatabase] = None


def create_app_components(
    backend: Optional[str] = None,
    exchange_rate_service: Optional[ExchangeRateService] = None,
    today_provider: Callable[[], date] = date.today,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        backend: "sql" or "memory"; defaults to the configured backend.
                 Use "memory" for tests and local experiments.
        exchange_rate_service: Override (tests pass one with a mock transport)
        today_provider: Clock used by the streak engine

    Returns:
        AppComponents sharing a single storage instance
    """
    backend = backend or get_settings().app.storage_backend
    audit_logger = AuditLogger()

    database = None
    if backend == "memory":
        storage = InMemoryStorage()
    elif backend == "sql":
        database = SQLDatabase()
        storage = SQLStorage(database)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    auth_gate = AuthGate(
        users=storage,
        sessions=SessionManager(storage),
        audit_logger=audit_logger,
    )

    return AppComponents(
        storage=storage,
        auth_gate=auth_gate,
        expense_flow=ExpenseFlow(storage, audit_logger),
        budget_flow=BudgetFlow(storage, audit_logger),
        goal_flow=GoalFlow(storage, audit_logger),
        streak_flow=StreakFlow(storage, audit_logger, today_provider=today_provider),
        exchange_rate_service=exchange_rate_service or ExchangeRateService(),
        audit_logger=audit_logger,
        database=database,
    )
