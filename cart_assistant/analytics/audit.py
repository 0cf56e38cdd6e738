"""Audit trail of security and operational events."""

import traceback
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from cart_assistant.analytics.logger import logger
from cart_assistant.database.db import SessionLocal
from cart_assistant.database.models import AuditLog

# Recorded only when audit debugging is switched on
ROUTINE_ACTIONS = {"chat_completed"}


class AuditTrail:
    """Writes audit rows; never fails the request that triggered them."""

    def __init__(self, session_factory=None, debug: bool = False):
        self.session_factory = session_factory or SessionLocal
        self.debug = debug

    async def log(
        self,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        context=None,
    ) -> bool:
        """Record ``action``; returns False when suppressed or not stored."""
        details = details or {}
        logger.info(f"audit {action}: {details}")

        if action in ROUTINE_ACTIONS and not self.debug:
            return False

        db = self.session_factory()
        try:
            entry = AuditLog(
                user_id=getattr(context, "user_id", None),
                session_id=getattr(context, "session_id", None),
                action=action,
                details=details,
                ip_address=getattr(context, "client_ip", None),
                user_agent=(getattr(context, "user_agent", None) or "")[:255],
            )
            db.add(entry)
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not write audit event {action}: {e}")
            return False
        finally:
            db.close()

    async def log_error(
        self,
        action: str,
        error: BaseException,
        context=None,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Record ``<action>_error`` with the exception and its traceback."""
        payload = dict(details or {})
        payload.update({
            "error": str(error),
            "type": type(error).__name__,
            "trace": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        })
        logger.error(f"{action} failed: {type(error).__name__}: {error}")
        return await self.log(f"{action}_error", payload, context)
