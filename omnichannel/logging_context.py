"""Subject-aware logging context for tracing a customer across channels.

Provides a logger that attaches the current ``SubjectId`` to every log
record, so one customer's SMS thread and voice call can be followed
through the session manager as a single conversation.

Usage:
    from omnichannel.logging_context import get_session_logger, set_subject_id

    set_subject_id("phone_+14155550100")
    logger = get_session_logger(__name__)
    logger.info("Processing turn")  # record.subject_id == "phone_+14155550100"
"""

import logging
from contextvars import ContextVar

_subject_id: ContextVar[str] = ContextVar("subject_id", default="NO_SUBJECT")


def set_subject_id(subject_id: str) -> None:
    """Set the correlation ID for the current async context."""
    _subject_id.set(subject_id)


def get_subject_id() -> str:
    """Retrieve the current correlation ID."""
    return _subject_id.get()


class SubjectIdFilter(logging.Filter):
    """Injects subject_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.subject_id = _subject_id.get()  # type: ignore[attr-defined]
        return True


def get_session_logger(name: str) -> logging.Logger:
    """Return a logger with the SubjectIdFilter attached.

    The filter adds ``subject_id`` to each record so formatters can
    include ``%(subject_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, SubjectIdFilter) for f in logger.filters):
        logger.addFilter(SubjectIdFilter())
    return logger
