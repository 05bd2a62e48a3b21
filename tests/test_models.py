"""
Tests for Veryfin

Test strategy:
1. Unit tests for individual components (models, validators, streak engine)
2. Integration tests for flows and storage (in-memory and SQLite)
3. No real network calls in tests (httpx mock transports)
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from veryfin.models.finance import (
    BudgetCreate,
    ExpenseCreate,
    ExpenseUpdate,
    GoalCreate,
    GoalUpdate,
    RegisterRequest,
    SavingsStreak,
    SavingsStreakCreate,
    SessionRecord,
    StreakEntryCreate,
    StreakFrequency,
    User,
    UserPublic,
)
from veryfin.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from veryfin.config import AppSettings, DatabaseSettings, SessionSettings, validate_all_settings


class TestUserModels:
    """Tests for user and session models."""

    def test_user_email_is_lowercased(self):
        """Test that emails are stored lowercase."""
        user = User(email="Ana@Veryfin.IO", password_hash="x")
        assert user.email == "ana@veryfin.io"

    def test_user_gets_opaque_id(self):
        """Test that each user gets its own string id."""
        first = User(email="a@veryfin.io", password_hash="x")
        second = User(email="b@veryfin.io", password_hash="x")
        assert isinstance(first.id, str)
        assert first.id != second.id

    def test_user_public_hides_password_hash(self):
        """Test that the public view has no password hash."""
        user = User(email="ana@veryfin.io", password_hash="secret-hash", first_name="Ana")
        public = UserPublic.from_user(user)
        assert "password_hash" not in public.model_dump()
        assert public.first_name == "Ana"

    def test_register_rejects_short_password(self):
        """Test minimum password length."""
        with pytest.raises(ValueError):
            RegisterRequest(email="ana@veryfin.io", password="123")

    def test_register_rejects_bad_email(self):
        """Test email format validation."""
        with pytest.raises(ValueError):
            RegisterRequest(email="not-an-email", password="secret123")

    def test_session_expiry(self):
        """Test is_expired at and around the boundary."""
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        session = SessionRecord(token="t", user_id="u", expires_at=now + timedelta(hours=1))
        assert session.is_expired(now) is False
        assert session.is_expired(now + timedelta(hours=1)) is True


class TestExpenseModels:
    """Tests for expense models."""

    def test_expense_creation(self):
        """Test ExpenseCreate with required fields only."""
        expense = ExpenseCreate(
            description="Groceries",
            amount=Decimal("120.50"),
            category="food",
            date=date(2024, 5, 10),
        )
        assert expense.amount == Decimal("120.50")
        assert expense.is_recurring is False
        assert expense.day_of_month is None

    def test_expense_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        for amount in ("0", "-10"):
            with pytest.raises(ValueError):
                ExpenseCreate(
                    description="Groceries",
                    amount=Decimal(amount),
                    category="food",
                    date=date(2024, 5, 10),
                )

    def test_expense_rejects_short_description(self):
        """Test description minimum length."""
        with pytest.raises(ValueError):
            ExpenseCreate(description="ab", amount=Decimal("1"), category="food", date=date(2024, 5, 10))

    def test_expense_end_date_validation(self):
        """Test that end_date cannot be before date."""
        with pytest.raises(ValueError, match="End date cannot be before expense date"):
            ExpenseCreate(
                description="Gym membership",
                amount=Decimal("50"),
                category="health",
                date=date(2024, 5, 10),
                is_recurring=True,
                day_of_month=10,
                end_date=date(2024, 4, 1),
            )

    def test_expense_day_of_month_bounds(self):
        """Test day_of_month must be 1-31."""
        with pytest.raises(ValueError):
            ExpenseCreate(
                description="Rent",
                amount=Decimal("900"),
                category="housing",
                date=date(2024, 5, 1),
                day_of_month=32,
            )

    def test_expense_update_tracks_only_set_fields(self):
        """Test that a partial update only reports the fields sent."""
        update = ExpenseUpdate(amount=Decimal("99.99"), date=date(2024, 6, 1))
        assert update.model_dump(exclude_unset=True) == {
            "amount": Decimal("99.99"),
            "date": date(2024, 6, 1),
        }


class TestGoalAndBudgetModels:
    """Tests for goal and budget models."""

    def test_budget_defaults_to_monthly(self):
        """Test default budget period."""
        budget = BudgetCreate(category="food", amount=Decimal("500"))
        assert budget.period == "monthly"

    def test_goal_defaults(self):
        """Test current_amount and status defaults."""
        goal = GoalCreate(
            title="Emergency fund",
            target_amount=Decimal("10000"),
            category="savings",
            target_date=date(2025, 12, 31),
        )
        assert goal.current_amount == Decimal("0")
        assert goal.status == "active"

    def test_goal_update_cannot_carry_current_amount(self):
        """Test that current_amount is not part of a goal update."""
        update = GoalUpdate.model_validate({"title": "New title", "current_amount": 0})
        assert "current_amount" not in update.model_dump(exclude_unset=True)


class TestStreakModels:
    """Tests for savings streak models."""

    def test_streak_derived_fields_default(self):
        """Test that a new streak starts with empty progress."""
        streak = SavingsStreak(
            id=1,
            user_id="u",
            challenge_name="Save daily",
            target_amount=Decimal("10"),
            frequency=StreakFrequency.DAILY,
        )
        assert streak.current_streak == 0
        assert streak.longest_streak == 0
        assert streak.total_saved == Decimal("0")
        assert streak.last_save_date is None
        assert streak.is_active is True

    def test_streak_rejects_unknown_frequency(self):
        """Test frequency must be daily, weekly or monthly."""
        with pytest.raises(ValueError):
            SavingsStreakCreate(
                challenge_name="Save yearly",
                target_amount=Decimal("10"),
                frequency="yearly",
            )

    def test_streak_end_date_validation(self):
        """Test that end_date cannot be before start_date."""
        with pytest.raises(ValueError, match="End date cannot be before start date"):
            SavingsStreakCreate(
                challenge_name="Save weekly",
                target_amount=Decimal("10"),
                frequency="weekly",
                start_date=date(2024, 5, 1),
                end_date=date(2024, 4, 1),
            )

    def test_streak_entry_rejects_negative_amount(self):
        """Test that entries must be positive."""
        with pytest.raises(ValueError):
            StreakEntryCreate(amount=Decimal("-5"))

    def test_streak_entry_defaults_to_today(self):
        """Test the default save_date."""
        entry = StreakEntryCreate(amount=Decimal("5"))
        assert entry.save_date == date.today()


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            description="User registered",
        )
        assert event.event_type == AuditEventType.USER_REGISTERED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.GOAL_PROGRESS_UPDATED,
            description="Goal progress updated",
            details={"previous_amount": "0", "new_amount": "500"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "goal_progress_updated"
        assert log_dict["details"]["new_amount"] == "500"

    def test_audit_event_builder_entity_created(self):
        """Test AuditEventBuilder.entity_created."""
        correlation_id = uuid4()

        event = AuditEventBuilder.entity_created("expense", 12, "user-1", correlation_id)

        assert event.event_type == AuditEventType.ENTITY_CREATED
        assert event.entity_type == "expense"
        assert event.entity_id == "12"
        assert event.user_id == "user-1"
        assert event.correlation_id == correlation_id

    def test_audit_event_builder_login_failed_is_warning(self):
        """Test that failed logins are logged as warnings."""
        event = AuditEventBuilder.login_failed("ana@veryfin.io", "bad_password")

        assert event.event_type == AuditEventType.LOGIN_FAILED
        assert event.severity == AuditSeverity.WARNING
        assert event.details["reason"] == "bad_password"


class TestSettings:
    """Tests for configuration parsing."""

    def test_cors_origins_list(self):
        """Test that the comma-separated origins are split and trimmed."""
        settings = AppSettings(cors_origins="http://a.test, http://b.test,")
        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_database_url_gets_async_driver(self):
        """Test that sync URLs are switched to their async drivers."""
        assert DatabaseSettings(url="postgres://u:p@db/veryfin").url.startswith("postgresql+asyncpg://")
        assert DatabaseSettings(url="sqlite:///./local.db").url == "sqlite+aiosqlite:///./local.db"

    def test_session_ttl_seconds(self):
        """Test the TTL conversion."""
        assert SessionSettings(ttl_hours=2).ttl_seconds == 7200

    def test_validate_all_settings(self):
        """Test that the defaults validate."""
        results = validate_all_settings()
        assert all(results[name] for name in ("database", "session", "currency", "app"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
