"""Async helper for persisting errors to the error_logs table.

Usage from async code:
    from shared.error_capture import capture_error

    await capture_error(
        session_factory,
        service="notifications",
        error_type="schedule_execution",
        operation="run_schedule",
        error_message=str(e),
        schedule_id=str(schedule.id),
        context={"template_type": schedule.template_type},
    )

The function is wrapped in a broad try/except so it can never propagate
exceptions to the caller; error capturing must not break normal flow.
"""

from __future__ import annotations

import re
import uuid

import structlog

from shared.models.error_log import ErrorLog

logger = structlog.get_logger()

# Keys whose values should be redacted before storing in the DB.
_SECRET_KEY_PATTERN = re.compile(
    r"(token|key|secret|password|credential|auth)",
    re.IGNORECASE,
)


def _sanitize_context(context: dict | None) -> dict | None:
    """Strip secret-looking values from a dict before persisting."""
    if not context:
        return context
    return {
        k: "[REDACTED]" if _SECRET_KEY_PATTERN.search(k) else v
        for k, v in context.items()
    }


async def capture_error(
    session_factory,
    *,
    service: str,
    error_type: str,
    error_message: str,
    operation: str | None = None,
    context: dict | None = None,
    stack_trace: str | None = None,
    schedule_id: str | None = None,
    user_id: str | None = None,
) -> None:
    """Persist an error to the error_logs table. Never raises."""
    try:
        parsed_schedule_id: uuid.UUID | None = None
        if schedule_id:
            try:
                parsed_schedule_id = uuid.UUID(schedule_id)
            except (ValueError, AttributeError):
                pass

        async with session_factory() as session:
            session.add(
                ErrorLog(
                    service=service,
                    error_type=error_type,
                    operation=operation,
                    context=_sanitize_context(context),
                    error_message=error_message,
                    stack_trace=stack_trace,
                    schedule_id=parsed_schedule_id,
                    user_id=user_id,
                )
            )
            await session.commit()

        logger.debug(
            "error_captured",
            service=service,
            error_type=error_type,
            operation=operation,
        )
    except Exception:
        # Never let error capturing crash the caller.
        logger.warning("error_capture_failed", exc_info=True)
