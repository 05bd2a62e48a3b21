"""
Tests for the orchestrator flows.

Flows run over the in-memory store; a recording audit logger captures
what they report.
"""

import asyncio
import pytest
from datetime import date, timedelta
from decimal import Decimal

from veryfin.audit import AuditLogger
from veryfin.models.audit import AuditEventType
from veryfin.orchestrator import BudgetFlow, ExpenseFlow, GoalFlow, StreakFlow
from veryfin.services.storage import InMemoryStorage, NotFoundError
from veryfin.validation import ValidationFailedError


TODAY = date(2024, 6, 15)
ANA = "user-ana"
BOB = "user-bob"


class RecordingAuditLogger(AuditLogger):
    """Keeps every event in memory instead of only logging it."""

    def __init__(self):
        super().__init__()
        self.events = []

    async def log(self, event) -> bool:
        self.events.append(event)
        return True

    def types(self) -> list[AuditEventType]:
        return [event.event_type for event in self.events]


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit():
    return RecordingAuditLogger()


GOAL = {
    "title": "Emergency fund",
    "target_amount": "1000",
    "category": "savings",
    "target_date": "2025-01-01",
}

EXPENSE = {
    "description": "Groceries",
    "amount": "42.50",
    "category": "food",
    "date": "2024-05-10",
}

WEEKLY_STREAK = {
    "challenge_name": "Weekly saver",
    "target_amount": "100",
    "frequency": "weekly",
}


class TestExpenseFlow:
    """Tests for ExpenseFlow."""

    def test_create_audits(self, storage, audit):
        """Test that creation is audited with the owner."""
        flow = ExpenseFlow(storage, audit)

        created = asyncio.run(flow.create(ANA, EXPENSE))

        assert created.user_id == ANA
        assert audit.types() == [AuditEventType.ENTITY_CREATED]
        assert audit.events[0].user_id == ANA

    def test_invalid_payload_is_rejected_and_audited(self, storage, audit):
        """Test that a bad payload never reaches storage."""
        flow = ExpenseFlow(storage, audit)

        with pytest.raises(ValidationFailedError) as exc_info:
            asyncio.run(flow.create(ANA, {**EXPENSE, "amount": "-1"}))

        assert exc_info.value.issues[0].field == "amount"
        assert audit.types() == [AuditEventType.VALIDATION_FAILED]
        assert asyncio.run(flow.list_for_user(ANA)) == []

    def test_missing_and_foreign_ids_look_the_same(self, storage, audit):
        """Test that another user's expense is reported as not found."""
        flow = ExpenseFlow(storage, audit)
        created = asyncio.run(flow.create(ANA, EXPENSE))

        with pytest.raises(NotFoundError) as foreign:
            asyncio.run(flow.get(created.id, BOB))
        with pytest.raises(NotFoundError) as missing:
            asyncio.run(flow.get(9999, ANA))

        assert str(foreign.value) == str(missing.value) == "Expense not found"

    def test_update_merges_only_sent_fields(self, storage, audit):
        """Test partial update and its audit trail."""
        flow = ExpenseFlow(storage, audit)
        created = asyncio.run(flow.create(ANA, EXPENSE))

        updated = asyncio.run(flow.update(created.id, ANA, {"category": "household"}))

        assert updated.category == "household"
        assert updated.amount == Decimal("42.50")
        assert audit.events[-1].event_type == AuditEventType.ENTITY_UPDATED
        assert audit.events[-1].details["changed_fields"] == ["category"]

    def test_update_moves_date(self, storage, audit):
        """Test that an expense can be moved to another day."""
        flow = ExpenseFlow(storage, audit)
        created = asyncio.run(flow.create(ANA, EXPENSE))

        updated = asyncio.run(flow.update(created.id, ANA, {"date": "2024-06-01"}))

        assert updated.date == date(2024, 6, 1)
        assert updated.description == "Groceries"
        assert asyncio.run(flow.get(created.id, ANA)).date == date(2024, 6, 1)
        assert audit.events[-1].details["changed_fields"] == ["date"]

    def test_update_cannot_break_cross_field_rules(self, storage, audit):
        """Test that an end_date before the stored date is rejected."""
        flow = ExpenseFlow(storage, audit)
        created = asyncio.run(flow.create(ANA, EXPENSE))

        with pytest.raises(ValidationFailedError):
            asyncio.run(flow.update(created.id, ANA, {"end_date": "2024-01-01"}))

        assert asyncio.run(flow.get(created.id, ANA)).end_date is None

    def test_delete_foreign_expense(self, storage, audit):
        """Test that another user cannot delete an expense."""
        flow = ExpenseFlow(storage, audit)
        created = asyncio.run(flow.create(ANA, EXPENSE))

        with pytest.raises(NotFoundError):
            asyncio.run(flow.delete(created.id, BOB))

        asyncio.run(flow.delete(created.id, ANA))
        assert asyncio.run(flow.list_for_user(ANA)) == []


class TestBudgetFlow:
    """Tests for BudgetFlow."""

    def test_crud_round(self, storage, audit):
        """Test create, update, list and delete."""
        flow = BudgetFlow(storage, audit)

        async def run():
            budget = await flow.create(ANA, {"category": "food", "amount": "300"})
            await flow.update(budget.id, ANA, {"amount": "350"})
            listed = await flow.list_for_user(ANA)
            await flow.delete(budget.id, ANA)
            return listed, await flow.list_for_user(ANA)

        listed, after_delete = asyncio.run(run())
        assert listed[0].amount == Decimal("350")
        assert listed[0].period == "monthly"
        assert after_delete == []
        assert audit.types() == [
            AuditEventType.ENTITY_CREATED,
            AuditEventType.ENTITY_UPDATED,
            AuditEventType.ENTITY_DELETED,
        ]


class TestGoalProgress:
    """Tests for GoalFlow.set_current_amount."""

    @pytest.mark.parametrize("amount", [-5, "abc", "500", True, None, float("nan"), float("inf")])
    def test_rejects_bad_amounts(self, storage, audit, amount):
        """Test that non-numbers and negatives are rejected."""
        flow = GoalFlow(storage, audit)
        goal = asyncio.run(flow.create(ANA, GOAL))

        with pytest.raises(ValidationFailedError):
            asyncio.run(flow.set_current_amount(goal.id, ANA, amount))

        assert asyncio.run(flow.get(goal.id, ANA)).current_amount == Decimal("0")
        assert audit.events[-1].event_type == AuditEventType.VALIDATION_FAILED

    def test_stores_exact_amount(self, storage, audit):
        """Test that 500 is stored as exactly 500 and nothing else moves."""
        flow = GoalFlow(storage, audit)
        goal = asyncio.run(flow.create(ANA, GOAL))

        updated = asyncio.run(flow.set_current_amount(goal.id, ANA, 500))

        assert updated.current_amount == Decimal("500")
        assert updated.title == goal.title
        assert updated.target_amount == goal.target_amount
        assert updated.status == goal.status
        event = audit.events[-1]
        assert event.event_type == AuditEventType.GOAL_PROGRESS_UPDATED
        assert event.details == {"previous_amount": "0", "new_amount": "500"}

    def test_zero_is_allowed(self, storage, audit):
        """Test that progress can be reset to zero."""
        flow = GoalFlow(storage, audit)
        goal = asyncio.run(flow.create(ANA, {**GOAL, "current_amount": "10"}))

        updated = asyncio.run(flow.set_current_amount(goal.id, ANA, 0))

        assert updated.current_amount == Decimal("0")

    def test_foreign_goal(self, storage, audit):
        """Test that another user's goal is not found."""
        flow = GoalFlow(storage, audit)
        goal = asyncio.run(flow.create(ANA, GOAL))

        with pytest.raises(NotFoundError, match="Goal not found"):
            asyncio.run(flow.set_current_amount(goal.id, BOB, 100))

    def test_plain_update_keeps_current_amount(self, storage, audit):
        """Test that a regular update cannot overwrite progress."""
        flow = GoalFlow(storage, audit)
        goal = asyncio.run(flow.create(ANA, GOAL))
        asyncio.run(flow.set_current_amount(goal.id, ANA, 250))

        updated = asyncio.run(
            flow.update(goal.id, ANA, {"title": "Rainy day fund", "current_amount": 0})
        )

        assert updated.title == "Rainy day fund"
        assert updated.current_amount == Decimal("250")


class TestStreakFlow:
    """Tests for StreakFlow, including recalculation on new entries."""

    def make_flow(self, storage, audit) -> StreakFlow:
        return StreakFlow(storage, audit, today_provider=lambda: TODAY)

    def test_weekly_scenario(self, storage, audit):
        """Test entries 7 and 14 days back count, one 40 days back does not."""
        flow = self.make_flow(storage, audit)

        async def run():
            streak = await flow.create(ANA, WEEKLY_STREAK)
            for days_ago in (7, 14):
                result = await flow.add_entry(
                    streak.id, ANA,
                    {"amount": "100", "save_date": TODAY - timedelta(days=days_ago)},
                )
            after_two = result.streak
            result = await flow.add_entry(
                streak.id, ANA,
                {"amount": "100", "save_date": TODAY - timedelta(days=40)},
            )
            return after_two, result

        after_two, result = asyncio.run(run())
        assert after_two.current_streak == 2
        assert after_two.longest_streak == 2
        assert result.streak.current_streak == 2
        assert result.streak.longest_streak == 2
        assert result.streak.total_saved == Decimal("300")
        assert result.streak.last_save_date == TODAY - timedelta(days=7)
        assert result.entry.save_date == TODAY - timedelta(days=40)

    def test_entry_audits_addition_and_recalculation(self, storage, audit):
        """Test the two audit events of a new entry."""
        flow = self.make_flow(storage, audit)

        async def run():
            streak = await flow.create(ANA, WEEKLY_STREAK)
            await flow.add_entry(streak.id, ANA, {"amount": "25", "save_date": TODAY})

        asyncio.run(run())
        assert audit.types()[-2:] == [
            AuditEventType.STREAK_ENTRY_ADDED,
            AuditEventType.STREAK_RECALCULATED,
        ]
        assert audit.events[-1].details["total_saved"] == "25"

    def test_longest_streak_is_monotonic(self, storage, audit):
        """Test that longest_streak never goes down as entries arrive."""
        flow = StreakFlow(storage, audit, today_provider=lambda: TODAY)
        daily = {**WEEKLY_STREAK, "frequency": "daily"}

        async def run():
            streak = await flow.create(ANA, daily)
            longest = []
            for days_ago in (2, 1, 0, 30, 31):
                result = await flow.add_entry(
                    streak.id, ANA,
                    {"amount": "1", "save_date": TODAY - timedelta(days=days_ago)},
                )
                longest.append(result.streak.longest_streak)
            return longest

        longest = asyncio.run(run())
        assert longest == sorted(longest)
        assert longest[-1] == 3

    def test_entry_on_foreign_streak(self, storage, audit):
        """Test that entries cannot be added to or read from another user's streak."""
        flow = self.make_flow(storage, audit)
        streak = asyncio.run(flow.create(ANA, WEEKLY_STREAK))

        with pytest.raises(NotFoundError, match="Streak not found"):
            asyncio.run(flow.add_entry(streak.id, BOB, {"amount": "10"}))
        with pytest.raises(NotFoundError, match="Streak not found"):
            asyncio.run(flow.list_entries(streak.id, BOB))

        assert asyncio.run(flow.list_entries(streak.id, ANA)) == []

    def test_invalid_entry_amount(self, storage, audit):
        """Test that zero and negative entries are rejected."""
        flow = self.make_flow(storage, audit)
        streak = asyncio.run(flow.create(ANA, WEEKLY_STREAK))

        for amount in ("0", "-3"):
            with pytest.raises(ValidationFailedError):
                asyncio.run(flow.add_entry(streak.id, ANA, {"amount": amount}))

    def test_concurrent_entries_are_not_lost(self, storage, audit):
        """Test that simultaneous additions to one streak all count."""
        flow = self.make_flow(storage, audit)

        async def run():
            streak = await flow.create(ANA, {**WEEKLY_STREAK, "frequency": "daily"})
            await asyncio.gather(*[
                flow.add_entry(
                    streak.id, ANA,
                    {"amount": "1.10", "save_date": TODAY - timedelta(days=d)},
                )
                for d in range(5)
            ])
            return await flow.get(streak.id, ANA)

        streak = asyncio.run(run())
        assert streak.total_saved == Decimal("5.50")
        assert streak.current_streak == 5
        assert streak.longest_streak == 5

    def test_frequency_change_recomputes_progress(self, storage, audit):
        """Test that switching daily to weekly re-walks the entries."""
        flow = self.make_flow(storage, audit)

        async def run():
            streak = await flow.create(ANA, {**WEEKLY_STREAK, "frequency": "daily"})
            for days_ago in (0, 3):
                result = await flow.add_entry(
                    streak.id, ANA,
                    {"amount": "10", "save_date": TODAY - timedelta(days=days_ago)},
                )
            daily = result.streak
            weekly = await flow.update(streak.id, ANA, {"frequency": "weekly"})
            return daily, weekly, await flow.get(streak.id, ANA)

        daily, weekly, stored = asyncio.run(run())
        assert daily.current_streak == 1
        assert weekly.current_streak == 2
        assert weekly.longest_streak == 2
        assert stored.current_streak == 2
        assert audit.types()[-1] == AuditEventType.STREAK_RECALCULATED

    def test_rename_keeps_progress(self, storage, audit):
        """Test that an update without a new frequency leaves progress alone."""
        flow = self.make_flow(storage, audit)

        async def run():
            streak = await flow.create(ANA, WEEKLY_STREAK)
            await flow.add_entry(streak.id, ANA, {"amount": "10", "save_date": TODAY})
            return await flow.update(streak.id, ANA, {"challenge_name": "Weekly stash"})

        renamed = asyncio.run(run())
        assert renamed.challenge_name == "Weekly stash"
        assert renamed.current_streak == 1
        assert audit.types()[-1] == AuditEventType.ENTITY_UPDATED

    def test_client_cannot_set_derived_fields(self, storage, audit):
        """Test that progress fields in a create payload are ignored."""
        flow = self.make_flow(storage, audit)

        streak = asyncio.run(flow.create(ANA, {**WEEKLY_STREAK, "current_streak": 99, "total_saved": "1000"}))

        assert streak.current_streak == 0
        assert streak.total_saved == Decimal("0")

    def test_delete_streak_removes_entries(self, storage, audit):
        """Test that deleting a streak takes its entries with it."""
        flow = self.make_flow(storage, audit)

        async def run():
            streak = await flow.create(ANA, WEEKLY_STREAK)
            await flow.add_entry(streak.id, ANA, {"amount": "10", "save_date": TODAY})
            await flow.delete(streak.id, ANA)
            return streak, await storage.list_streak_entries(streak.id)

        streak, entries = asyncio.run(run())
        assert entries == []
        with pytest.raises(NotFoundError):
            asyncio.run(flow.get(streak.id, ANA))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
