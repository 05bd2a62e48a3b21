"""
SQL Storage Implementation

DESIGN DECISION: SQLAlchemy's asyncio extension is used so request
handlers only ever suspend at database I/O. Any SQLAlchemy URL with an
async driver works; the default is a local SQLite file via aiosqlite.

Every owned-record query filters on id AND user_id in the same WHERE
clause, so a foreign record and a missing record take the same path.

Partial updates load the row, merge the changes over a validated model,
and write back only the changed columns. A merge that would produce an
invalid record (e.g., end_date before date) fails validation instead of
being stored.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Optional, Type

from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from tenacity import retry, stop_after_attempt, wait_exponential

from veryfin.config import get_settings
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
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    SessionStorageInterface,
    StorageError,
    UserStorageInterface,
)
from veryfin.services.storage.tables import (
    Base,
    BudgetRow,
    ExpenseRow,
    GoalRow,
    SavingsStreakRow,
    SessionRow,
    StreakEntryRow,
    UserRow,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _column_value(value: Any) -> Any:
    """Plain column value for a model field (enums are stored by value)."""
    if isinstance(value, Enum):
        return value.value
    return value


def _to_columns(model: BaseModel, fields: Optional[set[str]] = None) -> dict[str, Any]:
    return {
        key: _column_value(value)
        for key, value in model.model_dump(include=fields).items()
    }


class SQLDatabase:
    """
    Low-level database wrapper.

    Owns the async engine and session factory, and creates the schema
    on first connect. Connecting is retried because the database may
    still be starting when the app boots.
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        settings = get_settings().database
        self._url = url or settings.url
        self._echo = settings.echo if echo is None else echo
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(
                self._url,
                echo=self._echo,
                pool_pre_ping=True,
            )
        return self._engine

    @property
    def sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)
        return self._sessions

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def connect(self) -> None:
        """
        Establish the connection and create any missing tables.
        """
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise ConnectionError(f"Failed to connect to database: {e}") from e

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None


class SQLStorage(UserStorageInterface, SessionStorageInterface, FinanceStorageInterface):
    """
    SQLAlchemy implementation of every storage interface.
    """

    def __init__(self, database: Optional[SQLDatabase] = None):
        self._db = database or SQLDatabase()
        self._streak_locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def database(self) -> SQLDatabase:
        return self._db

    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[AsyncSession]:
        """One session, one transaction. Backend errors become StorageError."""
        try:
            async with self._db.sessions.begin() as session:
                yield session
        except IntegrityError as e:
            raise StorageError(f"Failed to {action}: integrity violation") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to {action}: {e}") from e

    @staticmethod
    async def _owned_row(session: AsyncSession, row_cls: Type, record_id: int, user_id: str):
        result = await session.execute(
            select(row_cls).where(row_cls.id == record_id, row_cls.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def _get_owned(
        self,
        row_cls: Type,
        model_cls: Type[BaseModel],
        record_id: int,
        user_id: str,
    ) -> Optional[Any]:
        async with self._transaction(f"get {row_cls.__tablename__}") as session:
            row = await self._owned_row(session, row_cls, record_id, user_id)
            return model_cls.model_validate(row, from_attributes=True) if row else None

    async def _list_owned(
        self,
        row_cls: Type,
        model_cls: Type[BaseModel],
        user_id: str,
    ) -> list[Any]:
        async with self._transaction(f"list {row_cls.__tablename__}") as session:
            result = await session.execute(
                select(row_cls).where(row_cls.user_id == user_id).order_by(row_cls.id)
            )
            return [model_cls.model_validate(row, from_attributes=True) for row in result.scalars()]

    async def _create_owned(
        self,
        row_cls: Type,
        model_cls: Type[BaseModel],
        user_id: str,
        data: BaseModel,
        **extra: Any,
    ) -> Any:
        async with self._transaction(f"create {row_cls.__tablename__}") as session:
            row = row_cls(user_id=user_id, **_to_columns(data), **extra)
            session.add(row)
            await session.flush()
            return model_cls.model_validate(row, from_attributes=True)

    async def _update_owned(
        self,
        row_cls: Type,
        model_cls: Type[BaseModel],
        record_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Any]:
        async with self._transaction(f"update {row_cls.__tablename__}") as session:
            row = await self._owned_row(session, row_cls, record_id, user_id)
            if row is None:
                return None
            current = model_cls.model_validate(row, from_attributes=True)
            merged = model_cls.model_validate({**current.model_dump(), **changes})
            for key, value in _to_columns(merged, set(changes)).items():
                setattr(row, key, value)
            return merged

    async def _delete_owned(self, row_cls: Type, record_id: int, user_id: str) -> bool:
        async with self._transaction(f"delete {row_cls.__tablename__}") as session:
            result = await session.execute(
                delete(row_cls).where(row_cls.id == record_id, row_cls.user_id == user_id)
            )
            return result.rowcount > 0

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def create_user(self, user: User) -> User:
        try:
            async with self._db.sessions.begin() as session:
                session.add(UserRow(**_to_columns(user)))
        except IntegrityError as e:
            raise DuplicateError(f"Email already registered: {user.email}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to create user: {e}") from e
        return user

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        async with self._transaction("get user") as session:
            row = await session.get(UserRow, user_id)
            return User.model_validate(row, from_attributes=True) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._transaction("get user") as session:
            result = await session.execute(
                select(UserRow).where(UserRow.email == email.strip().lower())
            )
            row = result.scalar_one_or_none()
            return User.model_validate(row, from_attributes=True) if row else None

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def save_session(self, session_record: SessionRecord) -> SessionRecord:
        async with self._transaction("save session") as session:
            session.add(SessionRow(**_to_columns(session_record)))
        return session_record

    async def get_session(self, token: str) -> Optional[SessionRecord]:
        async with self._transaction("get session") as session:
            row = await session.get(SessionRow, token)
            return SessionRecord.model_validate(row, from_attributes=True) if row else None

    async def touch_session(self, token: str, expires_at: datetime) -> bool:
        async with self._transaction("touch session") as session:
            result = await session.execute(
                update(SessionRow).where(SessionRow.token == token).values(expires_at=expires_at)
            )
            return result.rowcount > 0

    async def delete_session(self, token: str) -> bool:
        async with self._transaction("delete session") as session:
            result = await session.execute(delete(SessionRow).where(SessionRow.token == token))
            return result.rowcount > 0

    async def purge_expired_sessions(self, now: datetime) -> int:
        async with self._transaction("purge sessions") as session:
            result = await session.execute(delete(SessionRow).where(SessionRow.expires_at <= now))
            return result.rowcount

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def create_expense(self, user_id: str, data: ExpenseCreate) -> Expense:
        return await self._create_owned(ExpenseRow, Expense, user_id, data, created_at=_utcnow())

    async def get_expense(self, expense_id: int, user_id: str) -> Optional[Expense]:
        return await self._get_owned(ExpenseRow, Expense, expense_id, user_id)

    async def list_expenses(
        self,
        user_id: str,
        category: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Expense]:
        query = select(ExpenseRow).where(ExpenseRow.user_id == user_id)
        if category:
            query = query.where(ExpenseRow.category == category)
        if date_from:
            query = query.where(ExpenseRow.date >= date_from)
        if date_to:
            query = query.where(ExpenseRow.date <= date_to)
        query = query.order_by(ExpenseRow.date.desc(), ExpenseRow.id.desc())

        async with self._transaction("list expenses") as session:
            result = await session.execute(query)
            return [Expense.model_validate(row, from_attributes=True) for row in result.scalars()]

    async def update_expense(
        self,
        expense_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Expense]:
        return await self._update_owned(ExpenseRow, Expense, expense_id, user_id, changes)

    async def delete_expense(self, expense_id: int, user_id: str) -> bool:
        return await self._delete_owned(ExpenseRow, expense_id, user_id)

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def create_budget(self, user_id: str, data: BudgetCreate) -> Budget:
        return await self._create_owned(BudgetRow, Budget, user_id, data, created_at=_utcnow())

    async def get_budget(self, budget_id: int, user_id: str) -> Optional[Budget]:
        return await self._get_owned(BudgetRow, Budget, budget_id, user_id)

    async def list_budgets(self, user_id: str) -> list[Budget]:
        return await self._list_owned(BudgetRow, Budget, user_id)

    async def update_budget(
        self,
        budget_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Budget]:
        return await self._update_owned(BudgetRow, Budget, budget_id, user_id, changes)

    async def delete_budget(self, budget_id: int, user_id: str) -> bool:
        return await self._delete_owned(BudgetRow, budget_id, user_id)

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    async def create_goal(self, user_id: str, data: GoalCreate) -> Goal:
        now = _utcnow()
        return await self._create_owned(GoalRow, Goal, user_id, data, created_at=now, updated_at=now)

    async def get_goal(self, goal_id: int, user_id: str) -> Optional[Goal]:
        return await self._get_owned(GoalRow, Goal, goal_id, user_id)

    async def list_goals(self, user_id: str) -> list[Goal]:
        return await self._list_owned(GoalRow, Goal, user_id)

    async def update_goal(
        self,
        goal_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[Goal]:
        return await self._update_owned(
            GoalRow, Goal, goal_id, user_id, {**changes, "updated_at": _utcnow()}
        )

    async def set_goal_current_amount(
        self,
        goal_id: int,
        user_id: str,
        amount: Decimal,
    ) -> Optional[Goal]:
        return await self._update_owned(
            GoalRow, Goal, goal_id, user_id, {"current_amount": amount, "updated_at": _utcnow()}
        )

    async def delete_goal(self, goal_id: int, user_id: str) -> bool:
        return await self._delete_owned(GoalRow, goal_id, user_id)

    # -------------------------------------------------------------------------
    # Savings streaks
    # -------------------------------------------------------------------------

    async def create_streak(self, user_id: str, data: SavingsStreakCreate) -> SavingsStreak:
        now = _utcnow()
        return await self._create_owned(
            SavingsStreakRow,
            SavingsStreak,
            user_id,
            data,
            current_streak=0,
            longest_streak=0,
            total_saved=Decimal("0"),
            last_save_date=None,
            created_at=now,
            updated_at=now,
        )

    async def get_streak(self, streak_id: int, user_id: str) -> Optional[SavingsStreak]:
        return await self._get_owned(SavingsStreakRow, SavingsStreak, streak_id, user_id)

    async def list_streaks(self, user_id: str) -> list[SavingsStreak]:
        return await self._list_owned(SavingsStreakRow, SavingsStreak, user_id)

    async def update_streak(
        self,
        streak_id: int,
        user_id: str,
        changes: dict[str, Any],
    ) -> Optional[SavingsStreak]:
        return await self._update_owned(
            SavingsStreakRow, SavingsStreak, streak_id, user_id, {**changes, "updated_at": _utcnow()}
        )

    async def update_streak_progress(
        self,
        streak_id: int,
        user_id: str,
        progress: StreakProgress,
    ) -> Optional[SavingsStreak]:
        async with self._transaction("update streak progress") as session:
            result = await session.execute(
                update(SavingsStreakRow)
                .where(SavingsStreakRow.id == streak_id, SavingsStreakRow.user_id == user_id)
                .values(**_to_columns(progress), updated_at=_utcnow())
            )
            if result.rowcount == 0:
                return None
            row = await self._owned_row(session, SavingsStreakRow, streak_id, user_id)
            await session.refresh(row)
            return SavingsStreak.model_validate(row, from_attributes=True)

    async def delete_streak(self, streak_id: int, user_id: str) -> bool:
        async with self._transaction("delete streak") as session:
            row = await self._owned_row(session, SavingsStreakRow, streak_id, user_id)
            if row is None:
                return False
            await session.execute(delete(StreakEntryRow).where(StreakEntryRow.streak_id == streak_id))
            await session.delete(row)
        self._streak_locks.pop(streak_id, None)
        return True

    def streak_lock(self, streak_id: int) -> asyncio.Lock:
        # TODO: swap for SELECT ... FOR UPDATE on the streak row when running more than one worker process
        return self._streak_locks[streak_id]

    # -------------------------------------------------------------------------
    # Streak entries
    # -------------------------------------------------------------------------

    async def add_streak_entry(self, streak_id: int, data: StreakEntryCreate) -> StreakEntry:
        async with self._transaction("add streak entry") as session:
            row = StreakEntryRow(streak_id=streak_id, created_at=_utcnow(), **_to_columns(data))
            session.add(row)
            await session.flush()
            return StreakEntry.model_validate(row, from_attributes=True)

    async def list_streak_entries(self, streak_id: int) -> list[StreakEntry]:
        async with self._transaction("list streak entries") as session:
            result = await session.execute(
                select(StreakEntryRow)
                .where(StreakEntryRow.streak_id == streak_id)
                .order_by(StreakEntryRow.save_date.desc(), StreakEntryRow.id.desc())
            )
            return [StreakEntry.model_validate(row, from_attributes=True) for row in result.scalars()]
