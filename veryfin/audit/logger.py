"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. A record of who changed which financial record

The audit logger:
- Is async so flows can await it uniformly
- Never raises into the main flow
- Supports correlation IDs to trace all events of one request
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from veryfin.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(debug: bool = False) -> None:
    """
    Route stdlib logging (and therefore structlog) to stdout.

    Call once at startup. Structlog renders the JSON; the stdlib
    handler only prints the message.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )


class AuditLogger:
    """
    Central audit logging service.

    Writes every AuditEvent to the structured log at a level
    matching its severity.
    """

    def __init__(self):
        self._logger = structlog.get_logger("veryfin.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the event was written.
        """
        log_dict = event.to_log_dict()

        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except (ValueError, TypeError, OSError) as e:
            # An unserializable detail must not take the request down with it
            logging.getLogger("veryfin.audit").error(
                "audit_log_failed event_id=%s error=%s", event.event_id, e
            )
            return False

        return True

    async def log_user_registered(
        self,
        user_id: str,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.user_registered(user_id, email, correlation_id))

    async def log_login_succeeded(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.login_succeeded(user_id, correlation_id))

    async def log_login_failed(
        self,
        email: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.login_failed(email, reason, correlation_id))

    async def log_logged_out(
        self,
        user_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.logged_out(user_id, correlation_id))

    async def log_session_expired(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_expired(user_id, correlation_id))

    async def log_entity_created(
        self,
        entity_type: str,
        entity_id: int,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log creation of an owned record."""
        await self.log(AuditEventBuilder.entity_created(
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_entity_updated(
        self,
        entity_type: str,
        entity_id: int,
        user_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a partial update of an owned record."""
        await self.log(AuditEventBuilder.entity_updated(
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_entity_deleted(
        self,
        entity_type: str,
        entity_id: int,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log deletion of an owned record."""
        await self.log(AuditEventBuilder.entity_deleted(
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_goal_progress_updated(
        self,
        goal_id: int,
        user_id: str,
        previous_amount: str,
        new_amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.goal_progress_updated(
            goal_id=goal_id,
            user_id=user_id,
            previous_amount=previous_amount,
            new_amount=new_amount,
            correlation_id=correlation_id,
        ))

    async def log_streak_entry_added(
        self,
        streak_id: int,
        entry_id: int,
        user_id: str,
        amount: str,
        save_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.streak_entry_added(
            streak_id=streak_id,
            entry_id=entry_id,
            user_id=user_id,
            amount=amount,
            save_date=save_date,
            correlation_id=correlation_id,
        ))

    async def log_streak_recalculated(
        self,
        streak_id: int,
        user_id: str,
        current_streak: int,
        longest_streak: int,
        total_saved: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.streak_recalculated(
            streak_id=streak_id,
            user_id=user_id,
            current_streak=current_streak,
            longest_streak=longest_streak,
            total_saved=total_saved,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        operation: str,
        issues: list[dict],
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        await self.log(AuditEventBuilder.validation_failed(
            operation=operation,
            issues=issues,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    The HTTP layer creates one per request and passes it through
    every flow call made while handling it.
    """
    return uuid4()
