"""
Data Models Package

This package contains all Pydantic models used in Veryfin.
All data flowing through the system must conform to these schemas.
"""

from veryfin.models.finance import (
    Budget,
    BudgetCreate,
    BudgetUpdate,
    ExchangeRates,
    Expense,
    ExpenseCreate,
    ExpenseUpdate,
    Goal,
    GoalCreate,
    GoalProgressUpdate,
    GoalUpdate,
    LoginRequest,
    RegisterRequest,
    SavingsStreak,
    SavingsStreakCreate,
    SavingsStreakUpdate,
    SessionRecord,
    StreakEntry,
    StreakEntryCreate,
    StreakEntryResult,
    StreakFrequency,
    StreakProgress,
    User,
    UserPublic,
    ValidationIssue,
)
from veryfin.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Finance models
    "Budget",
    "BudgetCreate",
    "BudgetUpdate",
    "ExchangeRates",
    "Expense",
    "ExpenseCreate",
    "ExpenseUpdate",
    "Goal",
    "GoalCreate",
    "GoalProgressUpdate",
    "GoalUpdate",
    "LoginRequest",
    "RegisterRequest",
    "SavingsStreak",
    "SavingsStreakCreate",
    "SavingsStreakUpdate",
    "SessionRecord",
    "StreakEntry",
    "StreakEntryCreate",
    "StreakEntryResult",
    "StreakFrequency",
    "StreakProgress",
    "User",
    "UserPublic",
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
