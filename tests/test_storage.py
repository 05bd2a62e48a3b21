"""
Tests for the storage backends.

Every test runs against both the in-memory store and the SQL store
(a throwaway SQLite file). The SQL engine is bound to the event loop
that created it, so each scenario runs start to finish inside a single
asyncio.run call.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from veryfin.auth import hash_password
from veryfin.models.finance import (
    BudgetCreate,
    ExpenseCreate,
    GoalCreate,
    SavingsStreakCreate,
    StreakEntryCreate,
    StreakProgress,
    User,
)
from veryfin.services.storage import (
    DuplicateError,
    InMemoryStorage,
    SQLDatabase,
    SQLStorage,
)


@pytest.fixture(params=["memory", "sql"])
def run_with_storage(request, tmp_path):
    """Run an async scenario against a fresh store of each kind."""

    def run(scenario):
        async def wrapper():
            if request.param == "memory":
                return await scenario(InMemoryStorage())

            database = SQLDatabase(url=f"sqlite+aiosqlite:///{tmp_path / 'veryfin.db'}")
            await database.connect()
            try:
                return await scenario(SQLStorage(database))
            finally:
                await database.dispose()

        return asyncio.run(wrapper())

    return run


async def make_user(storage, email: str) -> User:
    return await storage.create_user(User(email=email, password_hash=hash_password("secret123")))


def expense(description="Groceries", amount="42.50", category="food", on=date(2024, 5, 10)):
    return ExpenseCreate(description=description, amount=Decimal(amount), category=category, date=on)


def goal():
    return GoalCreate(
        title="Emergency fund",
        target_amount=Decimal("1000"),
        category="savings",
        target_date=date(2025, 1, 1),
    )


def streak():
    return SavingsStreakCreate(
        challenge_name="Weekly saver",
        target_amount=Decimal("100"),
        frequency="weekly",
        start_date=date(2024, 1, 1),
    )


class TestUsers:
    """Tests for user storage."""

    def test_lookup_by_email_is_case_insensitive(self, run_with_storage):
        """Test that stored emails can be found in any case."""
        async def scenario(storage):
            user = await make_user(storage, "ana@veryfin.io")
            found = await storage.get_user_by_email("ANA@Veryfin.io")
            return user, found

        user, found = run_with_storage(scenario)
        assert found.id == user.id

    def test_duplicate_email_rejected(self, run_with_storage):
        """Test the unique email constraint."""
        async def scenario(storage):
            await make_user(storage, "ana@veryfin.io")
            await make_user(storage, "ana@veryfin.io")

        with pytest.raises(DuplicateError):
            run_with_storage(scenario)


class TestOwnership:
    """Tests that records are only reachable by their owner."""

    def test_foreign_records_look_missing(self, run_with_storage):
        """Test get, update and delete of another user's records."""
        async def scenario(storage):
            ana = await make_user(storage, "ana@veryfin.io")
            bob = await make_user(storage, "bob@veryfin.io")

            created = await storage.create_expense(ana.id, expense())
            return {
                "get": await storage.get_expense(created.id, bob.id),
                "update": await storage.update_expense(created.id, bob.id, {"category": "x"}),
                "delete": await storage.delete_expense(created.id, bob.id),
                "list": await storage.list_expenses(bob.id),
                "still_there": await storage.get_expense(created.id, ana.id),
            }

        result = run_with_storage(scenario)
        assert result["get"] is None
        assert result["update"] is None
        assert result["delete"] is False
        assert result["list"] == []
        assert result["still_there"].category == "food"

    def test_lists_are_scoped(self, run_with_storage):
        """Test that each user lists only their own budgets, goals and streaks."""
        async def scenario(storage):
            ana = await make_user(storage, "ana@veryfin.io")
            bob = await make_user(storage, "bob@veryfin.io")
            await storage.create_budget(ana.id, BudgetCreate(category="food", amount=Decimal("300")))
            await storage.create_goal(ana.id, goal())
            await storage.create_streak(ana.id, streak())
            return (
                await storage.list_budgets(bob.id),
                await storage.list_goals(bob.id),
                await storage.list_streaks(bob.id),
                await storage.list_budgets(ana.id),
            )

        bob_budgets, bob_goals, bob_streaks, ana_budgets = run_with_storage(scenario)
        assert bob_budgets == [] and bob_goals == [] and bob_streaks == []
        assert len(ana_budgets) == 1


class TestExpenses:
    """Tests for expense queries and updates."""

    def test_list_filters_and_order(self, run_with_storage):
        """Test category and inclusive date filters, newest first."""
        async def scenario(storage):
            ana = await make_user(storage, "ana@veryfin.io")
            await storage.create_expense(ana.id, expense(on=date(2024, 5, 1)))
            await storage.create_expense(ana.id, expense(on=date(2024, 5, 20)))
            await storage.create_expense(ana.id, expense(on=date(2024, 5, 10)))
            await storage.create_expense(ana.id, expense(category="rent", on=date(2024, 5, 15)))
            return await storage.list_expenses(
                ana.id,
                category="food",
                date_from=date(2024, 5, 10),
                date_to=date(2024, 5, 20),
            )

        expenses = run_with_storage(scenario)
        assert [e.date for e in expenses] == [date(2024, 5, 20), date(2024, 5, 10)]

    def test_partial_update_keeps_other_fields(self, run_with_storage):
        """Test that only the given fields change."""
        async def scenario(storage):
            ana = await make_user(storage, "ana@veryfin.io")
            created = await storage.create_expense(ana.id, expense())
            await storage.update_expense(created.id, ana.id, {"amount": Decimal("10.00")})
            return await storage.get_expense(created.id, ana.id)

        updated = run_with_storage(scenario)
        assert updated.amount == Decimal("10.00")
        assert updated.description == "Groceries"
        assert updated.date == date(2024, 5, 10)


class TestGoals:
    """Tests for goal progress storage."""

    def test_set_current_amount_only_touches_amount(self, run_with_storage):
        """Test that the progress write leaves the rest of the goal alone."""
        async def scenario(storage):
            ana = await make_user(storage, "ana@veryfin.io")
            created = await storage.create_goal(ana.id, goal())
            updated = await storage.set_goal_current_amount(created.id, ana.id, Decimal("250.75"))
            return created, updated

        created, updated = run_with_storage(scenario)
        assert updated.current_amount == Decimal("250.75")
        assert updated.title == created.title
        assert updated.target_amount == created.target_amount
        assert updated.updated_at >= created.updated_at


class TestStreaks:
    """Tests for streak and entry storage."""

    def test_progress_write_and_entry_order(self, run_with_storage):
        """Test the derived-field write and newest-first entry listing."""
        async def scenario(storage):
            ana = await make_user(storage, "ana@veryfin.io")
            created = await storage.create_streak(ana.id, streak())
            await storage.add_streak_entry(created.id, StreakEntryCreate(amount=Decimal("5"), save_date=date(2024, 5, 1)))
            await storage.add_streak_entry(created.id, StreakEntryCreate(amount=Decimal("7"), save_date=date(2024, 5, 8)))
            progress = StreakProgress(
                total_saved=Decimal("12"),
                current_streak=2,
                longest_streak=2,
                last_save_date=date(2024, 5, 8),
            )
            updated = await storage.update_streak_progress(created.id, ana.id, progress)
            entries = await storage.list_streak_entries(created.id)
            return updated, entries

        updated, entries = run_with_storage(scenario)
        assert updated.progress.total_saved == Decimal("12")
        assert updated.current_streak == 2
        assert updated.last_save_date == date(2024, 5, 8)
        assert [e.save_date for e in entries] == [date(2024, 5, 8), date(2024, 5, 1)]

    def test_delete_streak_removes_entries(self, run_with_storage):
        """Test the cascade from streak to entries."""
        async def scenario(storage):
            ana = await make_user(storage, "ana@veryfin.io")
            created = await storage.create_streak(ana.id, streak())
            await storage.add_streak_entry(created.id, StreakEntryCreate(amount=Decimal("5")))
            deleted = await storage.delete_streak(created.id, ana.id)
            return deleted, await storage.list_streak_entries(created.id)

        deleted, entries = run_with_storage(scenario)
        assert deleted is True
        assert entries == []

    def test_progress_write_on_foreign_streak(self, run_with_storage):
        """Test that another user cannot write progress."""
        async def scenario(storage):
            ana = await make_user(storage, "ana@veryfin.io")
            bob = await make_user(storage, "bob@veryfin.io")
            created = await storage.create_streak(ana.id, streak())
            return await storage.update_streak_progress(created.id, bob.id, StreakProgress())

        assert run_with_storage(scenario) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
