"""Tests for the audit trail."""
import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import SQLAlchemyError

from cart_assistant.analytics.audit import AuditTrail
from cart_assistant.database.models import AuditLog


def rows(session_factory):
    db = session_factory()
    try:
        return db.query(AuditLog).order_by(AuditLog.id).all()
    finally:
        db.close()


@pytest.mark.asyncio
async def test_event_is_stored_with_caller(session_factory, guest_context):
    audit = AuditTrail(session_factory)

    assert await audit.log("rate_limited", {"retry_after": 60}, guest_context) is True

    [row] = rows(session_factory)
    assert row.action == "rate_limited"
    assert row.details == {"retry_after": 60}
    assert row.session_id == guest_context.session_id
    assert row.ip_address == guest_context.client_ip
    assert row.user_agent == "pytest"


@pytest.mark.asyncio
async def test_routine_events_need_debug(session_factory, guest_context):
    assert await AuditTrail(session_factory).log("chat_completed", {}, guest_context) is False
    assert rows(session_factory) == []

    assert await AuditTrail(session_factory, debug=True).log("chat_completed", {}, guest_context) is True
    assert len(rows(session_factory)) == 1


@pytest.mark.asyncio
async def test_log_error(session_factory, guest_context):
    audit = AuditTrail(session_factory)
    try:
        raise KeyError("missing")
    except KeyError as e:
        await audit.log_error("process_message", e, guest_context, {"iterations": 2})

    [row] = rows(session_factory)
    assert row.action == "process_message_error"
    assert row.details["type"] == "KeyError"
    assert row.details["iterations"] == 2
    assert "Traceback" in row.details["trace"]


@pytest.mark.asyncio
async def test_write_failure_is_not_raised(guest_context):
    db = MagicMock()
    db.commit.side_effect = SQLAlchemyError("locked")

    assert await AuditTrail(lambda: db).log("timeout", {}, guest_context) is False
    db.rollback.assert_called_once()
