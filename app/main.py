"""
FastAPI Application for Veryfin

This is the HTTP surface that the web and mobile clients talk to.

DESIGN PRINCIPLES:
1. Routes only translate HTTP into flow calls
2. The session cookie is resolved once, by a dependency
3. Every error maps to one status code and one JSON shape
4. Internal details never reach the client

Error shape: {"message": ..., "errors": [...]} for validation failures,
{"message": ...} for everything else.
"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from veryfin import __version__
from veryfin.audit import configure_logging, create_correlation_id
from veryfin.auth import UnauthenticatedError
from veryfin.auth.gate import INVALID_CREDENTIALS
from veryfin.config import get_settings, validate_all_settings
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
    StreakEntry,
    StreakEntryCreate,
    StreakEntryResult,
    User,
    UserPublic,
    utcnow,
)
from veryfin.orchestrator import AppComponents, create_app_components
from veryfin.services.currency import UpstreamUnavailableError
from veryfin.services.storage import DuplicateError, NotFoundError
from veryfin.validation import ValidationFailedError, issues_from_errors


logger = structlog.get_logger("veryfin.api")

router = APIRouter()


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_components(request: Request) -> AppComponents:
    return request.app.state.components


def get_correlation_id(request: Request):
    return getattr(request.state, "correlation_id", None) or create_correlation_id()


def _set_session_cookie(request: Request, response: Response, token: str) -> None:
    session_settings = request.app.state.session_settings
    response.set_cookie(
        key=session_settings.cookie_name,
        value=token,
        max_age=session_settings.ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=session_settings.cookie_secure,
    )


def _session_token(request: Request) -> Optional[str]:
    return request.cookies.get(request.app.state.session_settings.cookie_name)


async def current_user(
    request: Request,
    response: Response,
    components: AppComponents = Depends(get_components),
) -> User:
    """Resolve the session cookie. Each authenticated request renews it."""
    token = _session_token(request)
    user = await components.auth_gate.resolve_session(token, get_correlation_id(request))
    _set_session_cookie(request, response, token)
    return user


# =============================================================================
# AUTH
# =============================================================================

@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    components: AppComponents = Depends(get_components),
):
    """Create an account and log it in."""
    correlation_id = get_correlation_id(request)
    user = await components.auth_gate.register(payload, correlation_id)
    session = await components.auth_gate.start_session(user)
    _set_session_cookie(request, response, session.token)
    return UserPublic.from_user(user)


@router.post("/login", response_model=UserPublic)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    components: AppComponents = Depends(get_components),
):
    result = await components.auth_gate.authenticate(
        payload.email, payload.password, get_correlation_id(request)
    )
    if not result.success:
        raise UnauthenticatedError(INVALID_CREDENTIALS)

    session = await components.auth_gate.start_session(result.user)
    _set_session_cookie(request, response, session.token)
    return UserPublic.from_user(result.user)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    components: AppComponents = Depends(get_components),
):
    await components.auth_gate.logout(_session_token(request), get_correlation_id(request))
    response.delete_cookie(request.app.state.session_settings.cookie_name)
    return {"message": "Logged out"}


@router.get("/session", response_model=UserPublic)
async def read_session(user: User = Depends(current_user)):
    return UserPublic.from_user(user)


# =============================================================================
# EXPENSES
# =============================================================================

@router.get("/expenses", response_model=list[Expense])
async def list_expenses(
    category: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.expense_flow.list_for_user(
        user.id, category=category, date_from=date_from, date_to=date_to
    )


@router.post("/expenses", response_model=Expense, status_code=status.HTTP_201_CREATED)
async def create_expense(
    payload: ExpenseCreate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.expense_flow.create(user.id, payload, get_correlation_id(request))


@router.get("/expenses/{expense_id}", response_model=Expense)
async def read_expense(
    expense_id: int,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.expense_flow.get(expense_id, user.id)


@router.put("/expenses/{expense_id}", response_model=Expense)
async def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.expense_flow.update(
        expense_id, user.id, payload, get_correlation_id(request)
    )


@router.delete("/expenses/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(
    expense_id: int,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    await components.expense_flow.delete(expense_id, user.id, get_correlation_id(request))


# =============================================================================
# BUDGETS
# =============================================================================

@router.get("/budgets", response_model=list[Budget])
async def list_budgets(
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.budget_flow.list_for_user(user.id)


@router.post("/budgets", response_model=Budget, status_code=status.HTTP_201_CREATED)
async def create_budget(
    payload: BudgetCreate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.budget_flow.create(user.id, payload, get_correlation_id(request))


@router.get("/budgets/{budget_id}", response_model=Budget)
async def read_budget(
    budget_id: int,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.budget_flow.get(budget_id, user.id)


@router.put("/budgets/{budget_id}", response_model=Budget)
async def update_budget(
    budget_id: int,
    payload: BudgetUpdate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.budget_flow.update(
        budget_id, user.id, payload, get_correlation_id(request)
    )


@router.delete("/budgets/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_budget(
    budget_id: int,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    await components.budget_flow.delete(budget_id, user.id, get_correlation_id(request))


# =============================================================================
# GOALS
# =============================================================================

@router.get("/goals", response_model=list[Goal])
async def list_goals(
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.goal_flow.list_for_user(user.id)


@router.post("/goals", response_model=Goal, status_code=status.HTTP_201_CREATED)
async def create_goal(
    payload: GoalCreate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.goal_flow.create(user.id, payload, get_correlation_id(request))


@router.get("/goals/{goal_id}", response_model=Goal)
async def read_goal(
    goal_id: int,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.goal_flow.get(goal_id, user.id)


@router.put("/goals/{goal_id}", response_model=Goal)
async def update_goal(
    goal_id: int,
    payload: GoalUpdate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.goal_flow.update(
        goal_id, user.id, payload, get_correlation_id(request)
    )


@router.patch("/goals/{goal_id}/progress", response_model=Goal)
async def update_goal_progress(
    goal_id: int,
    payload: GoalProgressUpdate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    """Overwrite current_amount. The only route that can change it."""
    return await components.goal_flow.set_current_amount(
        goal_id, user.id, payload.amount, get_correlation_id(request)
    )


@router.delete("/goals/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal(
    goal_id: int,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    await components.goal_flow.delete(goal_id, user.id, get_correlation_id(request))


# =============================================================================
# SAVINGS STREAKS
# =============================================================================

@router.get("/streaks", response_model=list[SavingsStreak])
async def list_streaks(
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.streak_flow.list_for_user(user.id)


@router.post("/streaks", response_model=SavingsStreak, status_code=status.HTTP_201_CREATED)
async def create_streak(
    payload: SavingsStreakCreate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.streak_flow.create(user.id, payload, get_correlation_id(request))


@router.get("/streaks/{streak_id}", response_model=SavingsStreak)
async def read_streak(
    streak_id: int,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.streak_flow.get(streak_id, user.id)


@router.put("/streaks/{streak_id}", response_model=SavingsStreak)
async def update_streak(
    streak_id: int,
    payload: SavingsStreakUpdate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.streak_flow.update(
        streak_id, user.id, payload, get_correlation_id(request)
    )


@router.delete("/streaks/{streak_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_streak(
    streak_id: int,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    await components.streak_flow.delete(streak_id, user.id, get_correlation_id(request))


@router.post(
    "/streaks/{streak_id}/entries",
    response_model=StreakEntryResult,
    status_code=status.HTTP_201_CREATED,
)
async def add_streak_entry(
    streak_id: int,
    payload: StreakEntryCreate,
    request: Request,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.streak_flow.add_entry(
        streak_id, user.id, payload, get_correlation_id(request)
    )


@router.get("/streaks/{streak_id}/entries", response_model=list[StreakEntry])
async def list_streak_entries(
    streak_id: int,
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.streak_flow.list_entries(streak_id, user.id)


# =============================================================================
# EXTERNAL
# =============================================================================

@router.get("/external/currency", response_model=ExchangeRates)
async def read_exchange_rates(
    base: Optional[str] = Query(default=None, pattern=r"^[A-Za-z]{3}$"),
    user: User = Depends(current_user),
    components: AppComponents = Depends(get_components),
):
    return await components.exchange_rate_service.get_latest_rates(base)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


async def handle_validation_failed(request: Request, exc: ValidationFailedError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": str(exc), "errors": exc.issues_as_dicts()},
    )


async def handle_request_validation(request: Request, exc: RequestValidationError):
    issues = issues_from_errors(exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "message": "Invalid request",
            "errors": [issue.model_dump() for issue in issues],
        },
    )


async def handle_unauthenticated(request: Request, exc: UnauthenticatedError):
    return _message(status.HTTP_401_UNAUTHORIZED, str(exc))


async def handle_not_found(request: Request, exc: NotFoundError):
    return _message(status.HTTP_404_NOT_FOUND, str(exc))


async def handle_duplicate(request: Request, exc: DuplicateError):
    return _message(status.HTTP_409_CONFLICT, str(exc))


async def handle_upstream_unavailable(request: Request, exc: UpstreamUnavailableError):
    await request.app.state.components.audit_logger.log_external_service_error(
        service="exchange_rates",
        error_message=str(exc),
        correlation_id=get_correlation_id(request),
    )
    return _message(status.HTTP_503_SERVICE_UNAVAILABLE, "Exchange rate service unavailable")


async def handle_unexpected(request: Request, exc: Exception):
    correlation_id = get_correlation_id(request)
    logger.error(
        "unhandled_error",
        path=request.url.path,
        correlation_id=str(correlation_id),
        exc_info=exc,
    )
    await request.app.state.components.audit_logger.log_error(
        error_type=type(exc).__name__,
        error_message=str(exc),
        details={"path": request.url.path},
        correlation_id=correlation_id,
    )
    return _message(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# =============================================================================
# APPLICATION
# =============================================================================

def create_app(components: Optional[AppComponents] = None) -> FastAPI:
    """
    Build the application.

    Args:
        components: Pre-wired components (tests pass in-memory ones);
                    built from settings when omitted
    """
    settings = get_settings()
    app_settings = settings.app
    configure_logging(app_settings.debug_mode)

    components = components or create_app_components()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        failed = [name for name, ok in validate_all_settings().items() if ok is False]
        if failed:
            logger.warning("settings_invalid", sections=failed)
        if components.database is not None:
            await components.database.connect()
        logger.info(
            "application_started",
            environment=app_settings.app_environment,
            backend=type(components.storage).__name__,
        )
        yield
        if components.database is not None:
            await components.database.dispose()

    app = FastAPI(
        title="Veryfin API",
        description="Personal finance backend: expenses, budgets, goals and savings streaks",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.components = components
    app.state.session_settings = settings.session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def attach_correlation_id(request: Request, call_next):
        request.state.correlation_id = create_correlation_id()
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = str(request.state.correlation_id)
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            correlation_id=str(request.state.correlation_id),
        )
        return response

    app.add_exception_handler(ValidationFailedError, handle_validation_failed)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(UnauthenticatedError, handle_unauthenticated)
    app.add_exception_handler(NotFoundError, handle_not_found)
    app.add_exception_handler(DuplicateError, handle_duplicate)
    app.add_exception_handler(UpstreamUnavailableError, handle_upstream_unavailable)
    app.add_exception_handler(Exception, handle_unexpected)

    @app.get("/", include_in_schema=False)
    async def root():
        return RedirectResponse(url="/docs")

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": utcnow().isoformat()}

    app.include_router(router, prefix=app_settings.api_prefix)
    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
